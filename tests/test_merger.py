"""Tests for profile merging and learning-strength scaling."""

import math

import pytest


def _analysis(**kwargs):
    from letterstyle.style.profile import AnalysisResult

    kwargs.setdefault("edits_analyzed", 10)
    return AnalysisResult(clinician_id="c1", subspecialty="IMAGING", **kwargs)


def _profile(**kwargs):
    from letterstyle.style.profile import StyleProfile

    kwargs.setdefault("total_edits_analyzed", 10)
    return StyleProfile(clinician_id="c1", subspecialty="IMAGING", **kwargs)


def test_first_merge_projects_analysis():
    from letterstyle.style.merger import merge_profile

    result = merge_profile(None, _analysis(
        section_order=["history", "plan"],
        greeting_style="formal",
        section_inclusion={"history": 1.3},
        confidence={"section_order": 0.7, "greeting_style": 0.9},
        edits_analyzed=6,
    ))
    assert result.section_order == ["history", "plan"]
    assert result.greeting_style == "formal"
    assert result.section_inclusion == {"history": 1.0}
    assert result.total_edits_analyzed == 6
    assert result.confidence["section_order"] == 0.7
    assert result.confidence["vocabulary_map"] == 0.0


def test_confidence_is_edit_weighted_average():
    from letterstyle.style.merger import merge_profile

    existing = _profile(confidence={"formality_level": 0.8}, total_edits_analyzed=30)
    merged = merge_profile(existing, _analysis(confidence={"formality_level": 0.4}, edits_analyzed=10))
    assert merged.confidence["formality_level"] == pytest.approx(0.7)
    assert merged.total_edits_analyzed == 40


@pytest.mark.parametrize("c1,w1,c2,w2", [(0.1, 1, 0.9, 50), (0.9, 3, 0.2, 7), (0.5, 5, 0.5, 5), (1.0, 100, 0.0, 1)])
def test_merged_confidence_between_inputs(c1, w1, c2, w2):
    from letterstyle.style.merger import merge_profile

    merged = merge_profile(
        _profile(confidence={"section_order": c1}, total_edits_analyzed=w1),
        _analysis(confidence={"section_order": c2}, edits_analyzed=w2),
    )
    assert min(c1, c2) <= merged.confidence["section_order"] <= max(c1, c2)


def test_single_valued_fields_prefer_new_on_ties():
    from letterstyle.style.merger import merge_profile

    existing = _profile(
        greeting_style="formal",
        formality_level="formal",
        terminology_level="specialist",
        confidence={"greeting_style": 0.6, "formality_level": 0.8, "terminology_level": 0.5},
    )
    merged = merge_profile(existing, _analysis(
        greeting_style="casual",
        formality_level="casual",
        terminology_level=None,
        confidence={"greeting_style": 0.6, "formality_level": 0.7, "terminology_level": 0.9},
    ))
    assert merged.greeting_style == "casual"        # tie goes to the newer analysis
    assert merged.formality_level == "formal"       # less confident, existing kept
    assert merged.terminology_level == "specialist" # new value missing


def test_phrase_lists_union_newest_first_with_cap():
    from letterstyle.style.merger import merge_phrase_lists

    merged = merge_phrase_lists(
        {"plan": ["Will arrange", "review in clinic"], "history": ["presents with"]},
        {"plan": ["will arrange", "recommend proceeding with"]},
        cap=2,
    )
    assert merged["plan"] == ["will arrange", "recommend proceeding with"]
    assert merged["history"] == ["presents with"]


def test_inclusion_and_vocabulary_merge():
    from letterstyle.style.merger import merge_profile

    existing = _profile(
        section_inclusion={"history": 1.0, "medications": 0.2},
        vocabulary_map={"utilize": "use", "commence": "begin"},
    )
    merged = merge_profile(existing, _analysis(
        section_inclusion={"history": 0.0, "family_history": 0.4},
        vocabulary_map={"commence": "start"},
    ))
    assert merged.section_inclusion["history"] == pytest.approx(0.5)
    assert merged.section_inclusion["medications"] == pytest.approx(0.2)
    assert merged.section_inclusion["family_history"] == pytest.approx(0.4)
    assert merged.vocabulary_map == {"utilize": "use", "commence": "start"}


def test_vocabulary_capped_keeping_newest():
    from letterstyle.style.merger import merge_profile

    existing = _profile(vocabulary_map={f"old{i}": "x" for i in range(3)})
    merged = merge_profile(existing, _analysis(vocabulary_map={"commence": "start", "utilize": "use"}), cap=3)
    assert list(merged.vocabulary_map) == ["commence", "utilize", "old0"]

    first = merge_profile(None, _analysis(vocabulary_map={f"t{i}": "x" for i in range(5)}), cap=2)
    assert first.vocabulary_map == {"t0": "x", "t1": "x"}


def test_merge_does_not_mutate_inputs():
    from letterstyle.style.merger import merge_profile

    existing = _profile(phrasing_preferences={"plan": ["will arrange"]})
    merge_profile(existing, _analysis(phrasing_preferences={"plan": ["book echo"]}))
    assert existing.phrasing_preferences == {"plan": ["will arrange"]}
    assert existing.total_edits_analyzed == 10


@pytest.mark.parametrize("value", [1.5, -0.1, "abc", None, math.nan])
def test_validate_strength_rejects(value):
    from letterstyle.style.errors import ValidationError
    from letterstyle.style.merger import validate_strength

    with pytest.raises(ValidationError):
        validate_strength(value)


def test_validate_strength_accepts_bounds():
    from letterstyle.style.merger import validate_strength

    assert validate_strength(0) == 0.0
    assert validate_strength("0.25") == 0.25
    assert validate_strength(1) == 1.0


def test_scale_full_strength_is_identity():
    from letterstyle.style.merger import scale_profile

    profile = _profile(phrasing_preferences={"plan": ["a", "b"]}, confidence={"section_order": 0.9})
    assert scale_profile(profile, 1.0) is profile


def test_scale_zero_is_neutral():
    from letterstyle.style.merger import scale_profile
    from letterstyle.style.profile import CONFIDENCE_CATEGORIES

    profile = _profile(
        section_order=["history", "plan"],
        section_inclusion={"history": 0.9},
        phrasing_preferences={"plan": ["a", "b"]},
        avoided_phrases={"plan": ["c"]},
        vocabulary_map={"x": "y"},
        confidence={c: 0.9 for c in CONFIDENCE_CATEGORIES},
    )
    scaled = scale_profile(profile, 0.0)
    assert scaled.section_order == []
    assert scaled.phrasing_preferences == {}
    assert scaled.avoided_phrases == {}
    assert scaled.vocabulary_map == {}
    assert all(v == 0.0 for v in scaled.confidence.values())
    # Original untouched
    assert profile.vocabulary_map == {"x": "y"}


def test_scale_partial_strength():
    from letterstyle.style.merger import scale_profile

    profile = _profile(
        section_inclusion={"history": 0.9, "medications": 0.1},
        phrasing_preferences={"plan": ["a", "b", "c", "d"], "history": ["only"]},
        vocabulary_map={"a": "1", "b": "2", "c": "3"},
        confidence={"section_order": 0.8},
    )
    scaled = scale_profile(profile, 0.5)
    assert scaled.confidence["section_order"] == pytest.approx(0.4)
    assert scaled.section_inclusion["history"] == pytest.approx(0.7)
    assert scaled.section_inclusion["medications"] == pytest.approx(0.3)
    assert scaled.phrasing_preferences == {"plan": ["a", "b"], "history": ["only"]}
    assert scaled.vocabulary_map == {"a": "1"}
