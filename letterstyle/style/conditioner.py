"""Turn a learned profile into generation-time guidance text.

Each preference category is applied only when its (strength-scaled)
confidence clears the threshold and it has data to say something about.
The guidance block is keyed by a fixed heading so conditioning the same
base prompt twice replaces the block instead of appending another.
"""

from dataclasses import dataclass, field

from letterstyle.style.merger import scale_profile
from letterstyle.style.profile import StyleProfile

MIN_CONFIDENCE_THRESHOLD = 0.5
MAX_PHRASES_PER_SECTION = 3
MAX_AVOIDED_PHRASES_PER_SECTION = 3
MAX_VOCABULARY_SUBSTITUTIONS = 8

STYLE_MARKER = "# PHYSICIAN STYLE PREFERENCES"

SAFETY_NOTE = (
    "Note: Apply these style preferences while maintaining clinical accuracy and safety. "
    "Never compromise factual correctness for style."
)


@dataclass
class ConditioningResult:
    prompt: str
    guidance_text: str
    hints: dict[str, str] = field(default_factory=dict)
    source: str = "default"
    profile_confidence: float = 0.0
    applied_categories: list[str] = field(default_factory=list)

    @property
    def metadata(self) -> dict:
        return {
            "source": self.source,
            "profile_confidence": round(self.profile_confidence, 3),
            "applied_categories": list(self.applied_categories),
        }


# ── Formatting helpers ────────────────────────────────────────────────────

def format_section_name(section: str) -> str:
    return section.replace("_", " ").title()


def format_subspecialty_name(subspecialty: str) -> str:
    return subspecialty.replace("_", " ").lower().title()


# ── Instruction builders ──────────────────────────────────────────────────

def section_order_instruction(order: list[str]) -> str:
    if not order:
        return ""
    return "Arrange the letter sections in this order: " + " → ".join(format_section_name(s) for s in order)


def verbosity_instruction(verbosity: dict[str, str]) -> str:
    if not verbosity:
        return ""
    lines = []
    for section, level in verbosity.items():
        name = format_section_name(section)
        if level == "brief":
            lines.append(f"- {name}: Keep concise (2-3 sentences)")
        elif level == "detailed":
            lines.append(f"- {name}: Include comprehensive details")
        else:
            lines.append(f"- {name}: Standard detail level")
    return "Detail level by section:\n" + "\n".join(lines)


def inclusion_instructions(inclusion: dict[str, float]) -> tuple[str | None, str | None]:
    """>= 0.8 means always include, <= 0.2 means omit."""
    include = [format_section_name(s) for s, p in inclusion.items() if p >= 0.8]
    exclude = [format_section_name(s) for s, p in inclusion.items() if p <= 0.2]
    return (
        f"Always include these sections: {', '.join(include)}" if include else None,
        f"Omit these sections unless specifically relevant: {', '.join(exclude)}" if exclude else None,
    )


def _phrase_lines(phrases: dict[str, list[str]], limit: int, template: str) -> list[str]:
    lines = []
    for section, items in phrases.items():
        if items:
            quoted = ", ".join(f'"{p}"' for p in items[:limit])
            lines.append(template.format(section=format_section_name(section), phrases=quoted))
    return lines


def phrasing_instruction(phrases: dict[str, list[str]]) -> str:
    lines = _phrase_lines(phrases, MAX_PHRASES_PER_SECTION, "- In {section}: prefer phrases like {phrases}")
    return "Preferred phrases:\n" + "\n".join(lines) if lines else ""


def avoided_instruction(phrases: dict[str, list[str]]) -> str:
    lines = _phrase_lines(phrases, MAX_AVOIDED_PHRASES_PER_SECTION, "- In {section}: avoid {phrases}")
    return "Phrases to avoid:\n" + "\n".join(lines) if lines else ""


def vocabulary_instruction(vocabulary: dict[str, str]) -> str:
    if not vocabulary:
        return ""
    items = list(vocabulary.items())[:MAX_VOCABULARY_SUBSTITUTIONS]
    return "Vocabulary preferences: use " + ", ".join(f'"{to}" instead of "{frm}"' for frm, to in items)


def greeting_instruction(style: str) -> str:
    return {
        "formal": 'Use a formal greeting (e.g., "Dear Dr. Smith," or "Dear Colleague,")',
        "casual": 'Use a casual greeting (e.g., "Hi," or first name)',
        "mixed": "Match greeting formality to the recipient",
    }.get(style, "")


def signoff_instruction(template: str, closing_style: str | None = None) -> str:
    note = f" ({closing_style} style)" if closing_style else ""
    return f'Use this closing{note}: "{template}"'


def formality_instruction(level: str) -> str:
    return f"Maintain a {level.replace('-', ' ')} tone throughout the letter"


def terminology_instruction(level: str) -> str:
    return {
        "specialist": "Use specialist medical terminology appropriate for healthcare professionals",
        "lay": "Use lay terms accessible to patients and non-specialists",
        "mixed": "Balance specialist and lay terminology based on the letter recipient",
    }.get(level, "")


def general_guidance(profile: StyleProfile, strength: float, threshold: float) -> str:
    parts = []
    avg = profile.overall_confidence()
    if avg >= 0.7:
        parts.append(f"This physician has a well-established writing style ({profile.total_edits_analyzed} edits analyzed).")
    elif avg >= 0.5:
        parts.append(f"Writing style preferences are emerging ({profile.total_edits_analyzed} edits analyzed).")

    if 0 < strength < 1:
        parts.append(f"Apply these preferences at {round(strength * 100)}% strength (clinician preference).")

    if profile.paragraph_structure and profile.confidence.get("paragraph_structure", 0.0) >= threshold:
        if profile.paragraph_structure == "short":
            parts.append("Keep paragraphs concise (2-3 sentences each).")
        elif profile.paragraph_structure == "long":
            parts.append("Use longer, more detailed paragraphs.")

    return " ".join(parts)


# ── Hint selection ────────────────────────────────────────────────────────

def build_hints(profile: StyleProfile, strength: float, threshold: float = MIN_CONFIDENCE_THRESHOLD) -> tuple[dict[str, str], list[str]]:
    """Select instruction blocks for categories that clear the gate.

    ``profile`` is expected to be already scaled by ``strength``.
    """
    conf = profile.confidence
    hints: dict[str, str] = {}
    applied: list[str] = []

    def gate(category: str, has_data) -> bool:
        ok = bool(has_data) and conf.get(category, 0.0) >= threshold
        if ok:
            applied.append(category)
        return ok

    if gate("section_order", profile.section_order):
        hints["section_order"] = section_order_instruction(profile.section_order)

    if gate("section_verbosity", profile.section_verbosity):
        hints["section_verbosity"] = verbosity_instruction(profile.section_verbosity)

    if gate("section_inclusion", profile.section_inclusion):
        include, exclude = inclusion_instructions(profile.section_inclusion)
        if include:
            hints["include_sections"] = include
        if exclude:
            hints["exclude_sections"] = exclude

    if gate("phrasing_preferences", any(profile.phrasing_preferences.values())):
        hints["preferred_phrases"] = phrasing_instruction(profile.phrasing_preferences)

    if gate("avoided_phrases", any(profile.avoided_phrases.values())):
        hints["avoided_phrases"] = avoided_instruction(profile.avoided_phrases)

    if gate("vocabulary_map", profile.vocabulary_map):
        hints["vocabulary"] = vocabulary_instruction(profile.vocabulary_map)

    if gate("greeting_style", greeting_instruction(profile.greeting_style or "")):
        hints["greeting"] = greeting_instruction(profile.greeting_style)

    if gate("signoff_template", profile.signoff_template):
        hints["closing"] = signoff_instruction(profile.signoff_template, profile.closing_style)

    if gate("formality_level", profile.formality_level):
        hints["formality"] = formality_instruction(profile.formality_level)

    if gate("terminology_level", terminology_instruction(profile.terminology_level or "")):
        hints["terminology"] = terminology_instruction(profile.terminology_level)

    guidance = general_guidance(profile, strength, threshold)
    if guidance:
        hints["general_guidance"] = guidance

    return hints, applied


def format_style_guidance(hints: dict[str, str], subspecialty: str, letter_type: str | None = None) -> str:
    blocks = [f"{STYLE_MARKER} ({format_subspecialty_name(subspecialty)})"]
    if letter_type:
        blocks.append(f"Letter type: {letter_type}")

    if hints.get("section_order"):
        blocks.append(f"## Section Order\n{hints['section_order']}")
    if hints.get("section_verbosity"):
        blocks.append(f"## {hints['section_verbosity']}")

    inclusion = [hints[k] for k in ("include_sections", "exclude_sections") if hints.get(k)]
    if inclusion:
        blocks.append("## Section Inclusion\n" + "\n".join(inclusion))

    if hints.get("preferred_phrases"):
        blocks.append(f"## {hints['preferred_phrases']}")
    if hints.get("avoided_phrases"):
        blocks.append(f"## {hints['avoided_phrases']}")
    if hints.get("vocabulary"):
        blocks.append(f"## Vocabulary\n{hints['vocabulary']}")

    tone = [f"• {hints[k]}" for k in ("greeting", "closing", "formality", "terminology") if hints.get(k)]
    if tone:
        blocks.append("## Tone & Style\n" + "\n".join(tone))

    if hints.get("general_guidance"):
        blocks.append(f"\n{hints['general_guidance']}")

    blocks.append(f"\n{SAFETY_NOTE}")
    return "\n\n".join(blocks)


def append_style_guidance(base_prompt: str, guidance: str) -> str:
    """Insert guidance, replacing any block previously inserted."""
    start = base_prompt.find(STYLE_MARKER)
    if start == -1:
        return f"{base_prompt}\n\n{guidance}" if base_prompt else guidance

    rest = base_prompt[start:]
    next_heading = rest.find("\n# ", 1)
    if next_heading > 0:
        return base_prompt[:start] + guidance + "\n\n" + rest[next_heading + 1:]
    return base_prompt[:start] + guidance


def condition(
    profile: StyleProfile | None,
    base_prompt: str = "",
    letter_type: str | None = None,
    threshold: float = MIN_CONFIDENCE_THRESHOLD,
) -> ConditioningResult:
    """Build guidance for a profile and splice it into ``base_prompt``.

    Unanalyzed profiles, missing profiles and a zero learning strength all
    leave the base prompt untouched with ``source="default"``.
    """
    if profile is None or profile.total_edits_analyzed <= 0 or profile.learning_strength <= 0:
        return ConditioningResult(prompt=base_prompt, guidance_text="")

    strength = profile.learning_strength
    scaled = scale_profile(profile, strength)
    hints, applied = build_hints(scaled, strength, threshold)
    guidance = format_style_guidance(hints, profile.subspecialty, letter_type)

    return ConditioningResult(
        prompt=append_style_guidance(base_prompt, guidance),
        guidance_text=guidance,
        hints=hints,
        source="subspecialty",
        profile_confidence=scaled.overall_confidence(),
        applied_categories=applied,
    )
