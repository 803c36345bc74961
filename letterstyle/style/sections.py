"""Split a clinical letter into typed sections.

Lines are classified against an ordered pattern table (first match wins).
Every character of the input belongs to exactly one section: offsets are
half-open ``[start_offset, end_offset)`` and tile the text with no gaps.
"""

import re
from dataclasses import dataclass

SECTION_TYPES = (
    "greeting",
    "introduction",
    "history",
    "presenting_complaint",
    "past_medical_history",
    "medications",
    "family_history",
    "social_history",
    "examination",
    "investigations",
    "impression",
    "plan",
    "follow_up",
    "closing",
    "signoff",
    "other",
)


@dataclass
class Section:
    type: str
    header: str | None
    content: str
    start_offset: int
    end_offset: int

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "header": self.header,
            "content": self.content,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
        }


# ── Pattern table ─────────────────────────────────────────────────────────

_H = r"^(?:##?\s*)?"   # optional markdown heading marker
_T = r"[:.]?$"         # optional trailing colon/period, then end of line


def _header(body: str) -> re.Pattern:
    return re.compile(_H + r"(?:" + body + r")" + _T, re.IGNORECASE)


# Ordered by specificity. Greeting and signoff lines are letter content, not
# headings, so they are kept in the section body.
SECTION_PATTERNS: list[tuple[str, list[re.Pattern]]] = [
    ("greeting", [
        re.compile(r"^dear\s+(?:dr\.?|doctor|professor|prof\.?|mr\.?|mrs\.?|ms\.?|miss)\s+[\w\s.'-]+,?", re.IGNORECASE),
        re.compile(r"^to\s+whom\s+it\s+may\s+concern,?", re.IGNORECASE),
        re.compile(r"^dear\s+colleagues?,?", re.IGNORECASE),
    ]),
    ("signoff", [
        re.compile(r"^yours\s+(?:sincerely|faithfully|truly),?", re.IGNORECASE),
        re.compile(r"^kind\s+regards,?", re.IGNORECASE),
        re.compile(r"^best\s+(?:wishes|regards),?", re.IGNORECASE),
        re.compile(r"^with\s+(?:kind\s+|best\s+)?regards,?", re.IGNORECASE),
        re.compile(r"^sincerely,?\s*$", re.IGNORECASE),
        re.compile(r"^regards,?\s*$", re.IGNORECASE),
    ]),
    ("presenting_complaint", [
        _header(r"presenting\s+complaint|chief\s+complaint|reason\s+for\s+(?:referral|visit|consultation)|pc|cc"),
    ]),
    ("history", [
        _header(r"history\s+of\s+present(?:ing)?\s+illness|hpi|history|clinical\s+history|background"),
    ]),
    ("past_medical_history", [
        _header(r"past\s+medical\s+history|pmh|pmhx|medical\s+history|past\s+history"),
    ]),
    ("medications", [
        _header(r"medications?|current\s+medications?|drug\s+list|medication\s+list|meds"),
    ]),
    ("family_history", [
        _header(r"family\s+history|fhx|fh"),
    ]),
    ("social_history", [
        _header(r"social\s+history|shx|sh"),
    ]),
    ("examination", [
        _header(r"(?:physical\s+)?examination|exam|clinical\s+examination|o/e|on\s+examination|examination\s+findings?"),
    ]),
    ("investigations", [
        _header(r"investigations?|results?|test\s+results?|laboratory|labs?|imaging|ecg|echo(?:cardiogram)?|angiography"),
    ]),
    ("impression", [
        _header(r"impression|diagnosis|diagnoses|assessment|clinical\s+impression|summary"),
    ]),
    ("plan", [
        _header(r"plan|management\s+plan|treatment\s+plan|recommendations?|management|proposed\s+management"),
    ]),
    ("follow_up", [
        _header(r"follow[- ]?up|fu|next\s+appointment|review|ongoing\s+care"),
    ]),
    ("introduction", [
        _header(r"introduction|re:|regarding|referral|thank\s+you\s+for\s+(?:referring|your\s+referral)"),
    ]),
    ("closing", [
        _header(r"closing|conclusion|in\s+summary|please\s+(?:do\s+not\s+hesitate|feel\s+free)|if\s+you\s+have\s+(?:any\s+)?(?:further\s+)?questions?"),
    ]),
]

_CONTENT_TYPES = {"greeting", "signoff"}

# "History: chest pain for 3 days." -> label "History", remainder "chest pain ..."
_INLINE_HEADER_RE = re.compile(r"^\s*((?:##?\s*)?[A-Za-z][A-Za-z/&' -]{0,40}?)\s*:\s+(\S.*)$")

# Generic heading heuristics for headings outside the table
_GENERIC_HEADER_RES = [
    re.compile(r"^##?\s+\w+"),
    re.compile(r"^[A-Z][A-Z\s]+:$"),
    re.compile(r"^[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*:$"),
]


def detect_section_type(line: str) -> str | None:
    """Return the section type a line introduces, or None."""
    trimmed = line.strip()
    if not trimmed:
        return None
    for section_type, patterns in SECTION_PATTERNS:
        for pattern in patterns:
            if pattern.search(trimmed):
                return section_type
    return None


def is_section_header(line: str) -> bool:
    trimmed = line.strip()
    if not trimmed:
        return False
    if detect_section_type(trimmed) is not None:
        return True
    return any(p.search(trimmed) for p in _GENERIC_HEADER_RES)


def _split_inline_header(line: str) -> tuple[str, str, str] | None:
    """Detect "Label: text" where the label is a known heading.

    Returns (section_type, header, remainder) or None.
    """
    m = _INLINE_HEADER_RE.match(line)
    if not m:
        return None
    label = m.group(1).strip() + ":"
    section_type = detect_section_type(label)
    if section_type is None or section_type in _CONTENT_TYPES:
        return None
    return section_type, label, m.group(2).strip()


def _infer_initial_type(first_line: str) -> str:
    """Guess the type of untitled leading text."""
    trimmed = first_line.strip().lower()
    if re.match(r"^dear\s+", trimmed) or re.match(r"^to\s+whom", trimmed):
        return "greeting"
    if re.match(r"^thank\s+you\s+for\s+(?:referring|seeing)", trimmed):
        return "introduction"
    if trimmed.startswith("re:") or trimmed.startswith("regarding:"):
        return "introduction"
    return "other"


def _classify_line(line: str) -> tuple[str, str | None, str | None] | None:
    """Classify a line that opens a new section.

    Returns (section_type, header, first_content_line) or None if the line
    continues the current section.
    """
    stripped = line.strip()
    if not stripped:
        return None

    section_type = detect_section_type(stripped)
    if section_type in _CONTENT_TYPES:
        return section_type, None, line
    if section_type is not None:
        return section_type, stripped, None

    inline = _split_inline_header(line)
    if inline:
        return inline

    if any(p.search(stripped) for p in _GENERIC_HEADER_RES):
        return "other", stripped, None
    return None


def parse_letter_sections(text: str) -> list[Section]:
    """Parse a letter into an ordered list of sections.

    Never raises. Empty input yields []. Any other input yields at least one
    section, and whitespace-only input yields a single ``other`` section.
    """
    if not text:
        return []

    # (type, header, start, lines)
    raw: list[list] = []
    offset = 0
    for i, line in enumerate(text.split("\n")):
        opened = _classify_line(line)
        if opened is not None:
            section_type, header, first = opened
            raw.append([section_type, header, offset, [first] if first is not None else []])
        elif not raw:
            # Untitled leading text
            raw.append([_infer_initial_type(line), None, offset, [line]])
        else:
            raw[-1][3].append(line)
        offset += len(line) + 1

    sections = []
    for idx, (section_type, header, start, lines) in enumerate(raw):
        end = raw[idx + 1][2] if idx + 1 < len(raw) else len(text)
        sections.append(Section(
            type=section_type,
            header=header,
            content="\n".join(lines).strip(),
            start_offset=start,
            end_offset=end,
        ))

    return _post_process(sections)


def _post_process(sections: list[Section]) -> list[Section]:
    """Retype untitled leading/trailing text from its content."""
    if not sections:
        return sections

    first = sections[0]
    if first.type == "other" and first.header is None:
        first_line = first.content.split("\n", 1)[0]
        detected = detect_section_type(first_line) or _infer_initial_type(first_line)
        if detected != "other":
            first.type = detected

    last = sections[-1]
    if last.type == "other":
        for line in last.content.split("\n"):
            if detect_section_type(line) == "signoff":
                last.type = "signoff"
                break

    return sections


def section_order(sections: list[Section]) -> list[str]:
    """Section types in document order, ignoring ``other``."""
    return [s.type for s in sections if s.type != "other"]
