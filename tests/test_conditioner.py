"""Tests for turning profiles into generation guidance."""

import pytest

BASE_PROMPT = "# TASK\nWrite a cardiology letter.\n\n# OUTPUT FORMAT\nPlain text only."


def _learned_profile(**kwargs):
    from letterstyle.style.profile import CONFIDENCE_CATEGORIES, StyleProfile

    defaults = dict(
        clinician_id="c1",
        subspecialty="HEART_FAILURE",
        section_order=["history", "examination", "plan"],
        section_inclusion={"medications": 0.9, "social_history": 0.1},
        section_verbosity={"plan": "brief"},
        phrasing_preferences={"plan": ["will arrange", "book echo", "review in clinic", "titrate slowly", "extra"]},
        avoided_phrases={"impression": ["It is felt that"]},
        vocabulary_map={"commence": "start"},
        greeting_style="formal",
        closing_style="formal",
        signoff_template="Yours sincerely,",
        formality_level="very-formal",
        terminology_level="specialist",
        paragraph_structure="short",
        confidence={c: 0.9 for c in CONFIDENCE_CATEGORIES},
        total_edits_analyzed=25,
    )
    defaults.update(kwargs)
    return StyleProfile(**defaults)


def test_unlearned_profile_returns_base_prompt():
    from letterstyle.style.conditioner import condition

    result = condition(_learned_profile(total_edits_analyzed=0, learning_strength=1.0), BASE_PROMPT)
    assert result.prompt == BASE_PROMPT
    assert result.source == "default"
    assert result.hints == {}


def test_missing_profile_and_zero_strength_are_default():
    from letterstyle.style.conditioner import condition

    assert condition(None, BASE_PROMPT).source == "default"
    result = condition(_learned_profile(learning_strength=0.0), BASE_PROMPT)
    assert result.source == "default"
    assert result.prompt == BASE_PROMPT


def test_learned_profile_renders_guidance():
    from letterstyle.style.conditioner import SAFETY_NOTE, STYLE_MARKER, condition

    result = condition(_learned_profile(), BASE_PROMPT, letter_type="Clinic letter")
    text = result.guidance_text

    assert result.source == "subspecialty"
    assert text.startswith(f"{STYLE_MARKER} (Heart Failure)")
    assert "Letter type: Clinic letter" in text
    assert "Arrange the letter sections in this order: History → Examination → Plan" in text
    assert "- Plan: Keep concise (2-3 sentences)" in text
    assert "Always include these sections: Medications" in text
    assert "Omit these sections unless specifically relevant: Social History" in text
    assert 'use "start" instead of "commence"' in text
    assert 'Use this closing (formal style): "Yours sincerely,"' in text
    assert "Maintain a very formal tone throughout the letter" in text
    assert "well-established writing style (25 edits analyzed)" in text
    assert "Keep paragraphs concise" in text
    assert text.rstrip().endswith(SAFETY_NOTE)
    assert result.metadata["source"] == "subspecialty"
    assert "section_order" in result.metadata["applied_categories"]


def test_preferred_phrases_capped_at_three():
    from letterstyle.style.conditioner import condition

    text = condition(_learned_profile()).guidance_text
    assert '"titrate slowly"' not in text
    assert '"will arrange", "book echo", "review in clinic"' in text


def test_low_confidence_categories_are_gated():
    from letterstyle.style.conditioner import condition

    profile = _learned_profile()
    profile.confidence["greeting_style"] = 0.3
    profile.confidence["vocabulary_map"] = 0.49
    result = condition(profile)

    assert "greeting" not in result.hints
    assert "vocabulary" not in result.hints
    assert "greeting_style" not in result.applied_categories
    assert "section_order" in result.applied_categories


def test_categories_without_data_are_skipped():
    from letterstyle.style.conditioner import condition

    result = condition(_learned_profile(section_order=[], vocabulary_map={}, signoff_template=None))
    assert "section_order" not in result.hints
    assert "vocabulary" not in result.hints
    assert "closing" not in result.hints


def test_conditioning_is_idempotent():
    from letterstyle.style.conditioner import STYLE_MARKER, condition

    profile = _learned_profile()
    once = condition(profile, BASE_PROMPT).prompt
    twice = condition(profile, once).prompt

    assert twice == once
    assert twice.count(STYLE_MARKER) == 1
    assert twice.startswith(BASE_PROMPT)


def test_replacing_block_keeps_following_headings():
    from letterstyle.style.conditioner import STYLE_MARKER, append_style_guidance

    prompt = f"# TASK\nWrite.\n\n{STYLE_MARKER} (Old)\n\n## Section Order\nold\n\n# OUTPUT FORMAT\nPlain."
    updated = append_style_guidance(prompt, f"{STYLE_MARKER} (New)\n\nnew")

    assert "(Old)" not in updated
    assert "## Section Order\nold" not in updated
    assert updated.endswith("# OUTPUT FORMAT\nPlain.")
    assert updated.startswith("# TASK\nWrite.\n\n" + STYLE_MARKER + " (New)")


def test_partial_strength_dampens_confidence():
    from letterstyle.style.conditioner import condition

    # 0.9 * 0.5 falls under the 0.5 gate for every category
    result = condition(_learned_profile(learning_strength=0.5))
    assert result.source == "subspecialty"
    assert result.applied_categories == []
    assert "Apply these preferences at 50% strength" in result.hints["general_guidance"]
    assert result.profile_confidence == pytest.approx(0.45)
