"""Phrase and vocabulary mining from section diffs."""

import re
from collections import Counter

from letterstyle.style.diff import SectionDiff

_CLAUSE_SPLIT_RE = re.compile(r"[.!?;]")
_PUNCT_RE = re.compile(r"[.,;:!?]")

# Clinical phrase shapes worth keeping even inside long sentences
_MEDICAL_PHRASE_RES = [
    re.compile(r"\b(?:LVEF|EF|BP|HR|RR)\s*(?:of\s*)?\d+%?", re.IGNORECASE),
    re.compile(r"\b\w+\s+\d+\s*(?:mg|mcg|g|mL|units?)\b", re.IGNORECASE),
    re.compile(r"\b(?:normal|abnormal|elevated|reduced|mild|moderate|severe)\s+\w+", re.IGNORECASE),
    re.compile(r"\b(?:recommend|suggest|advise|plan to|will)\s+[\w ]+", re.IGNORECASE),
]

MIN_PHRASE_CHARS = 5


def _dedupe(items) -> list:
    return list(dict.fromkeys(items))


def extract_meaningful_phrases(text: str) -> list[str]:
    """2-8 word clauses plus clinical phrase shapes, at least 5 chars each."""
    phrases = []
    for clause in _CLAUSE_SPLIT_RE.split(text):
        trimmed = clause.strip()
        if not trimmed:
            continue
        if 2 <= len(trimmed.split()) <= 8:
            phrases.append(trimmed)
        for pattern in _MEDICAL_PHRASE_RES:
            phrases.extend(m.group(0).strip() for m in pattern.finditer(trimmed))
    return [p for p in phrases if len(p) >= MIN_PHRASE_CHARS]


def find_added_text(original: str, modified: str) -> str | None:
    orig_words = set(original.lower().split())
    added = [w for w in modified.lower().split() if w not in orig_words]
    return " ".join(added) if added else None


def find_removed_text(original: str, modified: str) -> str | None:
    mod_words = set(modified.lower().split())
    removed = [w for w in original.lower().split() if w not in mod_words]
    return " ".join(removed) if removed else None


def extract_added_phrases(diff: SectionDiff) -> list[str]:
    phrases = []
    for change in diff.changes:
        if change.kind == "addition" and change.modified:
            phrases.extend(extract_meaningful_phrases(change.modified))
        elif change.kind == "modification" and change.original and change.modified:
            added = find_added_text(change.original, change.modified)
            if added:
                phrases.extend(extract_meaningful_phrases(added))
    return _dedupe(phrases)


def extract_removed_phrases(diff: SectionDiff) -> list[str]:
    phrases = []
    for change in diff.changes:
        if change.kind == "deletion" and change.original:
            phrases.extend(extract_meaningful_phrases(change.original))
        elif change.kind == "modification" and change.original and change.modified:
            removed = find_removed_text(change.original, change.modified)
            if removed:
                phrases.extend(extract_meaningful_phrases(removed))
    return _dedupe(phrases)


def _clean(word: str) -> str:
    return _PUNCT_RE.sub("", word.lower())


def find_word_substitutions(original: str, modified: str) -> list[tuple[str, str]]:
    orig_words = original.split()
    mod_words = modified.split()
    subs = []

    if len(orig_words) == len(mod_words):
        # Same length: compare position by position
        for o, m in zip(orig_words, mod_words):
            o, m = _clean(o), _clean(m)
            if o != m and len(o) >= 3 and len(m) >= 3:
                subs.append((o, m))
    elif abs(len(orig_words) - len(mod_words)) <= 2:
        orig_set = {_clean(w) for w in orig_words}
        mod_set = {_clean(w) for w in mod_words}
        removed = [w for w in (_clean(w) for w in orig_words) if len(w) >= 3 and w not in mod_set]
        added = [w for w in (_clean(w) for w in mod_words) if len(w) >= 3 and w not in orig_set]
        # Pair by similar length, one replacement per removed word
        for r in removed:
            for a in added:
                if abs(len(r) - len(a)) <= 4:
                    subs.append((r, a))
                    break
    return subs


def extract_vocabulary_substitutions(diff: SectionDiff) -> list[tuple[str, str]]:
    """(original, replacement) word pairs seen in modification changes."""
    subs = []
    for change in diff.changes:
        if change.kind == "modification" and change.original and change.modified:
            subs.extend(find_word_substitutions(change.original, change.modified))
    return subs


def summarize_signals(diffs: list[SectionDiff], limit: int = 10) -> dict:
    """Most frequent added/removed phrases and substitutions across diffs."""
    added, removed, substitutions = Counter(), Counter(), Counter()
    for diff in diffs:
        for phrase in extract_added_phrases(diff):
            added[(diff.section_type, phrase.lower())] += 1
        for phrase in extract_removed_phrases(diff):
            removed[(diff.section_type, phrase.lower())] += 1
        for pair in extract_vocabulary_substitutions(diff):
            substitutions[pair] += 1
    return {
        "added": added.most_common(limit),
        "removed": removed.most_common(limit),
        "substitutions": substitutions.most_common(limit),
    }
