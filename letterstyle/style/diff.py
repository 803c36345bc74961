"""Section-aligned, sentence-level diff between a draft and its approved letter."""

import re
from dataclasses import dataclass, field

from letterstyle.style.sections import Section, parse_letter_sections, section_order

# LCS ratio two sentences must exceed to count as a modification
MODIFICATION_SIMILARITY = 0.5

_WS_RE = re.compile(r"\s+")
_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")
_TRAILING_PUNCT_RE = re.compile(r"[.!?;:,]+$")


@dataclass
class Change:
    kind: str  # addition / deletion / modification
    original: str | None
    modified: str | None
    char_delta: int
    word_delta: int
    position: int

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "original": self.original,
            "modified": self.modified,
            "char_delta": self.char_delta,
            "word_delta": self.word_delta,
            "position": self.position,
        }


@dataclass
class SectionDiff:
    section_type: str
    draft_content: str | None
    final_content: str | None
    status: str  # unchanged / added / removed / modified
    changes: list[Change] = field(default_factory=list)
    total_char_delta: int = 0
    total_word_delta: int = 0

    def to_dict(self) -> dict:
        return {
            "section_type": self.section_type,
            "draft_content": self.draft_content,
            "final_content": self.final_content,
            "status": self.status,
            "changes": [c.to_dict() for c in self.changes],
            "total_char_delta": self.total_char_delta,
            "total_word_delta": self.total_word_delta,
        }


@dataclass
class DiffStats:
    total_char_added: int = 0
    total_char_removed: int = 0
    total_word_added: int = 0
    total_word_removed: int = 0
    sections_added: int = 0
    sections_removed: int = 0
    sections_modified: int = 0
    section_order_changed: bool = False


@dataclass
class LetterDiff:
    letter_id: str | None
    subspecialty: str | None
    draft_sections: list[Section]
    final_sections: list[Section]
    section_diffs: list[SectionDiff]
    stats: DiffStats

    def changed_sections(self) -> list[SectionDiff]:
        return [d for d in self.section_diffs if d.status != "unchanged"]


# ── Text helpers ──────────────────────────────────────────────────────────

def normalize(text: str) -> str:
    """Case-fold and collapse whitespace."""
    return _WS_RE.sub(" ", text.lower()).strip()


def count_words(text: str) -> int:
    return len(text.split())


def _lcs_length(a: str, b: str) -> int:
    # Two-row DP, O(len(b)) memory
    if len(b) > len(a):
        a, b = b, a
    prev = [0] * (len(b) + 1)
    for ch in a:
        curr = [0] * (len(b) + 1)
        for j, other in enumerate(b, 1):
            if ch == other:
                curr[j] = prev[j - 1] + 1
            else:
                curr[j] = max(prev[j], curr[j - 1])
        prev = curr
    return prev[-1]


def similarity(a: str, b: str) -> float:
    """LCS length over the longer normalized string, in [0, 1]."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    na, nb = normalize(a), normalize(b)
    if na == nb:
        return 1.0
    longest = max(len(na), len(nb))
    if longest == 0:
        return 0.0
    return _lcs_length(na, nb) / longest


def _is_extension(a: str, b: str) -> bool:
    """True when one sentence is the other with words added or trimmed at the end."""
    core_a = _TRAILING_PUNCT_RE.sub("", normalize(a))
    core_b = _TRAILING_PUNCT_RE.sub("", normalize(b))
    if not core_a or not core_b or core_a == core_b:
        return False
    shorter, longer = sorted((core_a, core_b), key=len)
    return longer.startswith(shorter + " ") or longer.startswith(shorter + ",")


def tokenize_sentences(text: str) -> list[tuple[str, int]]:
    """Split on terminal punctuation followed by whitespace.

    Returns (sentence, character offset) pairs.
    """
    sentences = []
    start = 0

    def _add(chunk: str, chunk_start: int):
        stripped = chunk.strip()
        if stripped:
            lead = len(chunk) - len(chunk.lstrip())
            sentences.append((stripped, chunk_start + lead))

    for m in _SENTENCE_BOUNDARY_RE.finditer(text):
        _add(text[start:m.start()], start)
        start = m.end()
    _add(text[start:], start)
    return sentences


# ── Alignment ─────────────────────────────────────────────────────────────

def align_sections(
    draft_sections: list[Section],
    final_sections: list[Section],
) -> list[tuple[Section | None, Section | None]]:
    """Pair draft and final sections by type.

    Greedy, in final order, first available draft section of the same type.
    Repeated section types are matched purely by order of appearance.
    """
    used_draft: set[int] = set()
    pairs: list[tuple[Section | None, Section | None]] = []
    unmatched_final: list[Section] = []

    for final in final_sections:
        match = None
        for di, draft in enumerate(draft_sections):
            if di not in used_draft and draft.type == final.type:
                match = di
                break
        if match is None:
            unmatched_final.append(final)
        else:
            used_draft.add(match)
            pairs.append((draft_sections[match], final))

    for di, draft in enumerate(draft_sections):
        if di not in used_draft:
            pairs.append((draft, None))
    for final in unmatched_final:
        pairs.append((None, final))

    def _position(pair):
        draft, final = pair
        return draft.start_offset if draft is not None else final.start_offset

    # sorted() is stable, so ties keep match order
    return sorted(pairs, key=_position)


# ── Sentence diff ─────────────────────────────────────────────────────────

def find_detailed_changes(original: str, modified: str) -> list[Change]:
    orig_sentences = tokenize_sentences(original)
    mod_sentences = tokenize_sentences(modified)
    matched_orig: set[int] = set()
    matched_mod: set[int] = set()
    changes: list[Change] = []

    # Pass 1: exact normalized matches
    for oi, (o_text, _) in enumerate(orig_sentences):
        key = normalize(o_text)
        for mi, (m_text, _) in enumerate(mod_sentences):
            if mi not in matched_mod and normalize(m_text) == key:
                matched_orig.add(oi)
                matched_mod.add(mi)
                break

    # Pass 2: best similar sentence becomes a modification
    for oi, (o_text, o_pos) in enumerate(orig_sentences):
        if oi in matched_orig:
            continue
        best_index, best_score = None, 0.0
        for mi, (m_text, _) in enumerate(mod_sentences):
            if mi in matched_mod:
                continue
            score = similarity(o_text, m_text)
            if score > MODIFICATION_SIMILARITY or _is_extension(o_text, m_text):
                if best_index is None or score > best_score:
                    best_index, best_score = mi, score
        if best_index is None:
            continue
        m_text = mod_sentences[best_index][0]
        matched_orig.add(oi)
        matched_mod.add(best_index)
        changes.append(Change(
            kind="modification",
            original=o_text,
            modified=m_text,
            char_delta=len(m_text) - len(o_text),
            word_delta=count_words(m_text) - count_words(o_text),
            position=o_pos,
        ))

    # Pass 3: deletions
    for oi, (o_text, o_pos) in enumerate(orig_sentences):
        if oi not in matched_orig:
            changes.append(Change(
                kind="deletion",
                original=o_text,
                modified=None,
                char_delta=-len(o_text),
                word_delta=-count_words(o_text),
                position=o_pos,
            ))

    # Pass 4: additions
    for mi, (m_text, m_pos) in enumerate(mod_sentences):
        if mi not in matched_mod:
            changes.append(Change(
                kind="addition",
                original=None,
                modified=m_text,
                char_delta=len(m_text),
                word_delta=count_words(m_text),
                position=m_pos,
            ))

    changes.sort(key=lambda c: c.position)
    return changes


def diff_section(draft: Section | None, final: Section | None) -> SectionDiff:
    source = draft if draft is not None else final
    section_type = source.type if source is not None else "other"

    if final is None:
        content = draft.content if draft else ""
        delta, words = len(content), count_words(content)
        return SectionDiff(
            section_type=section_type,
            draft_content=content,
            final_content=None,
            status="removed",
            changes=[Change("deletion", content, None, -delta, -words, 0)],
            total_char_delta=-delta,
            total_word_delta=-words,
        )

    if draft is None:
        content = final.content
        delta, words = len(content), count_words(content)
        return SectionDiff(
            section_type=section_type,
            draft_content=None,
            final_content=content,
            status="added",
            changes=[Change("addition", None, content, delta, words, 0)],
            total_char_delta=delta,
            total_word_delta=words,
        )

    if normalize(draft.content) == normalize(final.content):
        return SectionDiff(
            section_type=section_type,
            draft_content=draft.content,
            final_content=final.content,
            status="unchanged",
        )

    changes = find_detailed_changes(draft.content, final.content)
    return SectionDiff(
        section_type=section_type,
        draft_content=draft.content,
        final_content=final.content,
        status="modified",
        changes=changes,
        total_char_delta=sum(c.char_delta for c in changes),
        total_word_delta=sum(c.word_delta for c in changes),
    )


def _compute_stats(
    section_diffs: list[SectionDiff],
    draft_sections: list[Section],
    final_sections: list[Section],
) -> DiffStats:
    stats = DiffStats()
    for diff in section_diffs:
        if diff.status == "added":
            stats.sections_added += 1
            stats.total_char_added += diff.total_char_delta
            stats.total_word_added += diff.total_word_delta
        elif diff.status == "removed":
            stats.sections_removed += 1
            stats.total_char_removed += abs(diff.total_char_delta)
            stats.total_word_removed += abs(diff.total_word_delta)
        elif diff.status == "modified":
            stats.sections_modified += 1
            for change in diff.changes:
                if change.char_delta > 0:
                    stats.total_char_added += change.char_delta
                else:
                    stats.total_char_removed += abs(change.char_delta)
                if change.word_delta > 0:
                    stats.total_word_added += change.word_delta
                else:
                    stats.total_word_removed += abs(change.word_delta)

    stats.section_order_changed = section_order(draft_sections) != section_order(final_sections)
    return stats


def analyze_diff(
    draft_text: str,
    final_text: str,
    letter_id: str | None = None,
    subspecialty: str | None = None,
) -> LetterDiff:
    """Parse, align and diff a draft against its approved version."""
    draft_sections = parse_letter_sections(draft_text)
    final_sections = parse_letter_sections(final_text)
    aligned = align_sections(draft_sections, final_sections)
    section_diffs = [diff_section(d, f) for d, f in aligned]
    return LetterDiff(
        letter_id=letter_id,
        subspecialty=subspecialty,
        draft_sections=draft_sections,
        final_sections=final_sections,
        section_diffs=section_diffs,
        stats=_compute_stats(section_diffs, draft_sections, final_sections),
    )
