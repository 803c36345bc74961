"""Combine a stored profile with a new analysis, and dampen a profile by learning strength.

Both functions are pure. Persisting the result and stamping
``last_analyzed_at`` is the caller's job.
"""

import math

from letterstyle.style.errors import ValidationError
from letterstyle.style.profile import (
    CONFIDENCE_CATEGORIES,
    SINGLE_VALUED_FIELDS,
    AnalysisResult,
    Preference,
    StyleProfile,
    clamp,
    normalize_confidence,
)

MAX_PHRASES_PER_SECTION = 20


def validate_strength(strength) -> float:
    """Reject learning strengths outside [0, 1] before anything is persisted."""
    try:
        value = float(strength)
    except (TypeError, ValueError):
        raise ValidationError(f"Learning strength must be a number, got {strength!r}")
    if math.isnan(value) or value < 0.0 or value > 1.0:
        raise ValidationError(f"Learning strength must be between 0.0 and 1.0, got {strength}")
    return value


def weighted_average(existing: float, existing_weight: int, new: float, new_weight: int) -> float:
    total = existing_weight + new_weight
    if total <= 0:
        return clamp(new)
    return clamp((existing * existing_weight + new * new_weight) / total)


def _has_value(value) -> bool:
    return value is not None and value != "" and value != [] and value != {}


def choose(existing: Preference, new: Preference):
    """Pick between two (value, confidence) pairs.

    The new value wins when present and at least as confident; ties go to the
    newer analysis.
    """
    if _has_value(new.value) and new.confidence >= existing.confidence:
        return new.value
    return existing.value


def merge_phrase_lists(
    existing: dict[str, list[str]],
    new: dict[str, list[str]],
    cap: int = MAX_PHRASES_PER_SECTION,
) -> dict[str, list[str]]:
    """Union per section, newest first, case-insensitive dedupe, capped."""
    merged = {}
    for section in list(new) + [k for k in existing if k not in new]:
        seen = set()
        phrases = []
        for phrase in list(new.get(section) or []) + list(existing.get(section) or []):
            key = phrase.strip().lower()
            if not key or key in seen:
                continue
            seen.add(key)
            phrases.append(phrase.strip())
        merged[section] = phrases[:cap]
    return merged


def merge_vocabulary(existing: dict[str, str], new: dict[str, str], cap: int = MAX_PHRASES_PER_SECTION) -> dict[str, str]:
    """Newer substitutions override older ones; the newest ``cap`` terms are kept."""
    merged = dict(new)
    for term, replacement in existing.items():
        merged.setdefault(term, replacement)
    return dict(list(merged.items())[:cap])


def merge_inclusion(
    existing: dict[str, float],
    new: dict[str, float],
    existing_weight: int,
    new_weight: int,
) -> dict[str, float]:
    merged = {k: clamp(v) for k, v in existing.items()}
    for section, probability in new.items():
        if section in existing:
            merged[section] = weighted_average(existing[section], existing_weight, probability, new_weight)
        else:
            merged[section] = clamp(probability)
    return merged


def project_analysis(analysis: AnalysisResult, cap: int = MAX_PHRASES_PER_SECTION) -> StyleProfile:
    """First profile for a key: the analysis taken as-is."""
    return StyleProfile(
        clinician_id=analysis.clinician_id,
        subspecialty=analysis.subspecialty,
        section_order=list(analysis.section_order or []),
        section_inclusion={k: clamp(v) for k, v in analysis.section_inclusion.items()},
        section_verbosity=dict(analysis.section_verbosity),
        phrasing_preferences=merge_phrase_lists({}, analysis.phrasing_preferences, cap),
        avoided_phrases=merge_phrase_lists({}, analysis.avoided_phrases, cap),
        vocabulary_map=merge_vocabulary({}, analysis.vocabulary_map, cap),
        terminology_level=analysis.terminology_level,
        greeting_style=analysis.greeting_style,
        closing_style=analysis.closing_style,
        signoff_template=analysis.signoff_template,
        formality_level=analysis.formality_level,
        paragraph_structure=analysis.paragraph_structure,
        confidence=normalize_confidence(analysis.confidence),
        total_edits_analyzed=analysis.edits_analyzed,
    )


def merge_profile(
    existing: StyleProfile | None,
    analysis: AnalysisResult,
    cap: int = MAX_PHRASES_PER_SECTION,
) -> StyleProfile:
    """Merge a new analysis into an existing profile (or create one)."""
    if existing is None:
        return project_analysis(analysis, cap)

    w_old = existing.total_edits_analyzed
    w_new = analysis.edits_analyzed
    old_conf = normalize_confidence(existing.confidence)
    new_conf = normalize_confidence(analysis.confidence)

    merged = existing.copy()

    for name in SINGLE_VALUED_FIELDS:
        value = choose(existing.preference(name), analysis.preference(name))
        setattr(merged, name, list(value) if isinstance(value, list) else value)

    # Verbosity is a map; a more confident analysis overlays it
    overlay = choose(
        Preference({}, old_conf["section_verbosity"]),
        Preference(analysis.section_verbosity, new_conf["section_verbosity"]),
    )
    merged.section_verbosity = {**existing.section_verbosity, **overlay}

    merged.section_inclusion = merge_inclusion(
        existing.section_inclusion, analysis.section_inclusion, w_old, w_new,
    )
    merged.phrasing_preferences = merge_phrase_lists(
        existing.phrasing_preferences, analysis.phrasing_preferences, cap,
    )
    merged.avoided_phrases = merge_phrase_lists(
        existing.avoided_phrases, analysis.avoided_phrases, cap,
    )
    merged.vocabulary_map = merge_vocabulary(existing.vocabulary_map, analysis.vocabulary_map, cap)

    merged.confidence = {
        c: weighted_average(old_conf[c], w_old, new_conf[c], w_new)
        for c in CONFIDENCE_CATEGORIES
    }
    merged.total_edits_analyzed = w_old + w_new
    return merged


def _truncate(items: list, strength: float) -> list:
    if not items:
        return []
    return items[:max(1, math.floor(len(items) * strength))]


def scale_profile(profile: StyleProfile, strength: float) -> StyleProfile:
    """Dampen a profile toward neutral. Applied at read time, never persisted."""
    strength = validate_strength(strength)

    if strength >= 1.0:
        return profile

    if strength <= 0.0:
        return profile.copy(
            section_order=[],
            section_inclusion={},
            section_verbosity={},
            phrasing_preferences={},
            avoided_phrases={},
            vocabulary_map={},
            confidence={c: 0.0 for c in CONFIDENCE_CATEGORIES},
        )

    vocab = list(profile.vocabulary_map.items())
    return profile.copy(
        confidence={c: clamp(v * strength) for c, v in normalize_confidence(profile.confidence).items()},
        section_inclusion={k: clamp(0.5 + (v - 0.5) * strength) for k, v in profile.section_inclusion.items()},
        phrasing_preferences={k: _truncate(v, strength) for k, v in profile.phrasing_preferences.items()},
        avoided_phrases={k: _truncate(v, strength) for k, v in profile.avoided_phrases.items()},
        vocabulary_map=dict(_truncate(vocab, strength)),
    )
