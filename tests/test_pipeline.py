"""Tests for edit recording, analysis scheduling and the learning loop."""

import threading

import pytest

CLINICIAN = "clin-1"
SUBSPECIALTY = "HEART_FAILURE"


def _approve(learner, n, queue=None):
    """Approve a one-section letter, which records exactly one edit."""
    return learner.on_letter_approved(
        CLINICIAN, f"letter-{n}", SUBSPECIALTY,
        "Plan: observe.",
        f"Plan: observe overnight, review on day {n}.",
        queue=queue,
    )


# ── Recording ─────────────────────────────────────────────────────────────

def test_scenario_records_two_edits(learner, scenario):
    draft, final = scenario
    count, diff = learner.record_edits(CLINICIAN, "L1", SUBSPECIALTY, draft, final)

    assert count == 2
    assert learner.service.edits.count(CLINICIAN, SUBSPECIALTY) == 2
    rows = learner.service.edits.recent(CLINICIAN, SUBSPECIALTY, 10)
    assert {r.section_type for r in rows} == {"history", "plan"}
    assert all(r.edit_type == "modified" and r.word_changes > 0 for r in rows)

    audit = learner.service.audit.recent("style.subspecialty_edits_recorded")
    assert audit[0]["details"]["edits_recorded"] == 2
    assert audit[0]["resource_id"] == "L1"


def test_unchanged_letter_records_nothing(learner):
    count, _ = learner.record_edits(CLINICIAN, "L1", SUBSPECIALTY, "Plan: observe.", "Plan: observe.")
    assert count == 0
    assert learner.service.audit.recent("style.subspecialty_edits_recorded") == []


def test_leading_blank_line_records_no_empty_edit(learner):
    count, _ = learner.record_edits(
        CLINICIAN, "L1", SUBSPECIALTY, "\nHistory: chest pain.", "History: chest pain for 3 days.",
    )
    assert count == 1
    rows = learner.service.edits.recent(CLINICIAN, SUBSPECIALTY, 10)
    assert [r.section_type for r in rows] == ["history"]


def test_edit_statistics(learner, scenario):
    learner.record_edits(CLINICIAN, "L1", SUBSPECIALTY, *scenario)
    stats = learner.service.get_edit_statistics(CLINICIAN, SUBSPECIALTY)

    assert stats["subspecialty"] == SUBSPECIALTY
    assert stats["total_edits"] == 2
    assert stats["edits_last_7_days"] == 2
    assert stats["edits_last_30_days"] == 2
    assert stats["last_edit_date"] is not None


# ── Scheduling ────────────────────────────────────────────────────────────

@pytest.mark.parametrize("exists,total,count,expected,reason", [
    (False, 0, 4, False, "Need 1 more edits for initial analysis"),
    (False, 0, 5, True, "Initial profile creation (minimum edits reached)"),
    (True, 5, 14, False, "Need 1 more edits for next analysis"),
    (True, 5, 15, True, "10 new edits since last analysis"),
])
def test_should_trigger_analysis(exists, total, count, expected, reason):
    from letterstyle.style.pipeline import should_trigger_analysis

    decision = should_trigger_analysis(exists, total, count)
    assert decision.should_analyze is expected
    assert decision.reason == reason


def test_fifth_edit_makes_analysis_due(learner):
    for n in range(1, 5):
        outcome = _approve(learner, n)
        assert outcome.edits_recorded == 1
        assert outcome.analysis_due is False

    outcome = _approve(learner, 5)
    assert outcome.analysis_due is True
    assert outcome.analysis_queued is False
    assert outcome.reason == "Initial profile creation (minimum edits reached)"


def test_thresholds_come_from_config_store(learner, config):
    config.set_global("min_edits_for_analysis", "2")
    _approve(learner, 1)
    assert _approve(learner, 2).analysis_due is True


def test_strength_only_profile_still_gets_initial_analysis(learner):
    learner.service.create_profile(CLINICIAN, SUBSPECIALTY, learning_strength=0.4)
    for n in range(1, 6):
        outcome = _approve(learner, n)
    assert outcome.analysis_due is True

    profile = learner.run_analysis(CLINICIAN, SUBSPECIALTY)
    assert profile.total_edits_analyzed == 5
    assert profile.learning_strength == 0.4


# ── Analysis ──────────────────────────────────────────────────────────────

def test_run_analysis_creates_profile(learner):
    for n in range(1, 6):
        _approve(learner, n)

    profile = learner.run_analysis(CLINICIAN, SUBSPECIALTY)

    assert profile.total_edits_analyzed == 5
    assert profile.last_analyzed_at is not None
    assert profile.section_order[:2] == ["greeting", "history"]
    assert profile.phrasing_preferences["plan"] == ["will arrange", "recommend proceeding with"]
    assert profile.confidence["terminology_level"] == 0.9

    prompt, system_prompt = learner.analyzer.calls[0]
    assert "## PLAN SECTION" in prompt
    assert "Below are 5 examples" in prompt
    assert "physician writing style" in system_prompt

    stored = learner.service.profiles.get(CLINICIAN, SUBSPECIALTY)
    assert stored.total_edits_analyzed == 5
    assert learner.service.audit.recent("style.subspecialty_analysis_completed")


def test_second_analysis_merges(learner, make_analyzer, analysis_reply):
    for n in range(1, 6):
        _approve(learner, n)
    learner.run_analysis(CLINICIAN, SUBSPECIALTY)

    for n in range(6, 16):
        _approve(learner, n)
    assert learner.check_analysis(CLINICIAN, SUBSPECIALTY).should_analyze is True

    learner.analyzer = make_analyzer(analysis_reply(detectedVocabulary={"utilize": "use"}))
    profile = learner.run_analysis(CLINICIAN, SUBSPECIALTY)

    assert profile.total_edits_analyzed == 15
    assert profile.vocabulary_map == {"commence": "start", "utilize": "use"}
    assert "Below are 10 examples" in learner.analyzer.calls[0][0]


def test_analyzer_failure_leaves_profile_untouched(learner, make_analyzer):
    from letterstyle.style.errors import AnalysisError

    for n in range(1, 6):
        _approve(learner, n)
    learner.analyzer = make_analyzer(error=RuntimeError("service unavailable"))

    with pytest.raises(AnalysisError):
        learner.run_analysis(CLINICIAN, SUBSPECIALTY)
    assert learner.service.profiles.get(CLINICIAN, SUBSPECIALTY) is None

    learner.analyzer = make_analyzer(content="Sorry, no JSON today.")
    with pytest.raises(AnalysisError):
        learner.run_analysis(CLINICIAN, SUBSPECIALTY)
    assert learner.service.profiles.get(CLINICIAN, SUBSPECIALTY) is None


def test_run_analysis_requires_edits(learner, scenario):
    from letterstyle.style.errors import InsufficientDataError

    with pytest.raises(InsufficientDataError):
        learner.run_analysis(CLINICIAN, SUBSPECIALTY, force=True)

    learner.record_edits(CLINICIAN, "L1", SUBSPECIALTY, *scenario)
    with pytest.raises(InsufficientDataError):
        learner.run_analysis(CLINICIAN, SUBSPECIALTY)

    profile = learner.run_analysis(CLINICIAN, SUBSPECIALTY, force=True)
    assert profile.total_edits_analyzed == 2


def test_run_analysis_without_analyzer(service, config):
    from letterstyle.style.errors import AnalysisError
    from letterstyle.style.pipeline import StyleLearner

    with pytest.raises(AnalysisError):
        StyleLearner(service, config=config).run_analysis(CLINICIAN, SUBSPECIALTY, force=True)


def test_concurrent_profile_write_discards_merge(learner, make_analyzer):
    from letterstyle.style.errors import StaleProfileError

    class RacingAnalyzer(make_analyzer):
        def analyze(self, prompt, system_prompt):
            # Another writer creates the profile while analysis is in flight
            learner.service.create_profile(CLINICIAN, SUBSPECIALTY, learning_strength=0.7)
            return super().analyze(prompt, system_prompt)

    for n in range(1, 6):
        _approve(learner, n)
    learner.analyzer = RacingAnalyzer()

    with pytest.raises(StaleProfileError):
        learner.run_analysis(CLINICIAN, SUBSPECIALTY)

    stored = learner.service.get_profile(CLINICIAN, SUBSPECIALTY)
    assert stored.total_edits_analyzed == 0
    assert stored.learning_strength == 0.7


def test_profile_store_compare_and_swap(service):
    from letterstyle.style.errors import StaleProfileError
    from letterstyle.style.profile import StyleProfile

    service.save_profile(StyleProfile(CLINICIAN, SUBSPECIALTY, total_edits_analyzed=5), expected_edits_analyzed=None)

    with pytest.raises(StaleProfileError):
        service.profiles.save(StyleProfile(CLINICIAN, SUBSPECIALTY, total_edits_analyzed=9), expected_edits_analyzed=3)
    with pytest.raises(StaleProfileError):
        service.profiles.save(StyleProfile(CLINICIAN, SUBSPECIALTY), expected_edits_analyzed=None)
    assert service.profiles.get(CLINICIAN, SUBSPECIALTY).total_edits_analyzed == 5

    saved = service.profiles.save(StyleProfile(CLINICIAN, SUBSPECIALTY, total_edits_analyzed=9), expected_edits_analyzed=5)
    assert saved.total_edits_analyzed == 9


def test_slow_read_does_not_cache_over_newer_write(service, monkeypatch):
    from letterstyle.style.profile import StyleProfile

    service.save_profile(StyleProfile(CLINICIAN, SUBSPECIALTY, total_edits_analyzed=5), expected_edits_analyzed=None)
    service.cache.clear()

    read_from_store = service.profiles.get
    writes = []

    def write_during_read(clinician_id, subspecialty):
        stale = read_from_store(clinician_id, subspecialty)
        if not writes:
            writes.append(stale)
            service.save_profile(stale.copy(total_edits_analyzed=15), expected_edits_analyzed=5)
        return stale

    monkeypatch.setattr(service.profiles, "get", write_during_read)
    assert service.get_profile(CLINICIAN, SUBSPECIALTY).total_edits_analyzed == 5
    monkeypatch.undo()

    assert service.profiles.get(CLINICIAN, SUBSPECIALTY).total_edits_analyzed == 15
    assert service.get_profile(CLINICIAN, SUBSPECIALTY).total_edits_analyzed == 15


# ── Approval hook and background queue ────────────────────────────────────

def test_approval_never_raises(learner, monkeypatch):
    def broken_append(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(learner.service.edits, "append", broken_append)
    outcome = _approve(learner, 1)

    assert outcome.edits_recorded == 0
    assert outcome.analysis_due is False
    assert outcome.reason == "Style learning unavailable"


def test_queue_runs_analysis_in_background(learner):
    from letterstyle.style.pipeline import AnalysisQueue

    queue = AnalysisQueue(learner, max_workers=1)
    try:
        for n in range(1, 5):
            assert _approve(learner, n, queue=queue).analysis_queued is False
        outcome = _approve(learner, 5, queue=queue)
        assert outcome.analysis_queued is True

        queue.wait(timeout=10)
        profile = learner.service.get_profile(CLINICIAN, SUBSPECIALTY)
        assert profile is not None
        assert profile.total_edits_analyzed == 5
    finally:
        queue.shutdown()


def test_queue_skips_duplicate_pending_key(learner, make_analyzer):
    from letterstyle.style.pipeline import AnalysisQueue

    release = threading.Event()
    started = threading.Event()

    class SlowAnalyzer(make_analyzer):
        def analyze(self, prompt, system_prompt):
            started.set()
            release.wait(timeout=10)
            return super().analyze(prompt, system_prompt)

    for n in range(1, 6):
        _approve(learner, n)
    learner.analyzer = SlowAnalyzer()

    queue = AnalysisQueue(learner, max_workers=1)
    try:
        assert queue.submit(CLINICIAN, SUBSPECIALTY) is True
        assert started.wait(timeout=10)
        assert queue.submit(CLINICIAN, SUBSPECIALTY) is False
        release.set()
        queue.wait(timeout=10)
    finally:
        release.set()
        queue.shutdown()

    assert learner.service.get_profile(CLINICIAN, SUBSPECIALTY).total_edits_analyzed == 5


def test_queue_swallows_failures(learner, make_analyzer):
    from letterstyle.style.pipeline import AnalysisQueue

    for n in range(1, 6):
        _approve(learner, n)
    learner.analyzer = make_analyzer(error=RuntimeError("boom"))

    queue = AnalysisQueue(learner, max_workers=1)
    try:
        queue.submit(CLINICIAN, SUBSPECIALTY)
        queue.wait(timeout=10)
        # Key is free again after a failed run
        assert queue.submit(CLINICIAN, SUBSPECIALTY) is True
        queue.wait(timeout=10)
    finally:
        queue.shutdown()
    assert learner.service.get_profile(CLINICIAN, SUBSPECIALTY) is None


# ── Profiles and strength ─────────────────────────────────────────────────

def test_effective_profile_requires_learning(learner, service):
    service.create_profile(CLINICIAN, SUBSPECIALTY)
    assert service.get_effective_profile(CLINICIAN, SUBSPECIALTY) == (None, "default")
    assert service.condition_prompt(CLINICIAN, SUBSPECIALTY, "Base.").prompt == "Base."

    for n in range(1, 6):
        _approve(learner, n)
    learner.run_analysis(CLINICIAN, SUBSPECIALTY)

    profile, source = service.get_effective_profile(CLINICIAN, SUBSPECIALTY)
    assert source == "subspecialty"
    assert profile.total_edits_analyzed == 5
    result = service.condition_prompt(CLINICIAN, SUBSPECIALTY, "Base.")
    assert result.source == "subspecialty"
    assert result.prompt.startswith("Base.\n\n# PHYSICIAN STYLE PREFERENCES")


def test_adjust_learning_strength(service):
    from letterstyle.style.errors import ProfileNotFoundError, ValidationError

    with pytest.raises(ProfileNotFoundError):
        service.adjust_learning_strength(CLINICIAN, SUBSPECIALTY, 0.5)

    service.create_profile(CLINICIAN, SUBSPECIALTY)
    service.get_profile(CLINICIAN, SUBSPECIALTY)  # warm the cache

    with pytest.raises(ValidationError):
        service.adjust_learning_strength(CLINICIAN, SUBSPECIALTY, 1.5)

    updated = service.adjust_learning_strength(CLINICIAN, SUBSPECIALTY, 0.3)
    assert updated.learning_strength == 0.3
    assert service.get_profile(CLINICIAN, SUBSPECIALTY).learning_strength == 0.3

    audit = service.audit.recent("style.learning_strength_adjusted")
    assert audit[0]["details"]["previous_strength"] == 1.0
    assert audit[0]["details"]["new_strength"] == 0.3


def test_delete_profile_invalidates_cache(service):
    service.create_profile(CLINICIAN, SUBSPECIALTY)
    assert service.get_profile(CLINICIAN, SUBSPECIALTY) is not None

    assert service.delete_profile(CLINICIAN, SUBSPECIALTY) is True
    assert service.get_profile(CLINICIAN, SUBSPECIALTY) is None
    assert service.delete_profile(CLINICIAN, SUBSPECIALTY) is False
    assert service.audit.recent("style.subspecialty_profile_deleted")


# ── Seed letters and imports ──────────────────────────────────────────────

def test_seed_letters_bootstrap_profile(learner):
    service = learner.service
    service.add_seed_letter(CLINICIAN, SUBSPECIALTY, "Dear Dr Smith,\n\nHistory:\nBreathless.\n\nPlan:\nDiuretics.")
    service.add_seed_letter(CLINICIAN, SUBSPECIALTY, "Dear Colleague,\n\nPlan:\nWill arrange echo.")

    profile = learner.analyze_seed_letters(CLINICIAN, SUBSPECIALTY)
    assert profile.total_edits_analyzed == 2
    assert "## Letter 2" in learner.analyzer.calls[0][0]

    letters = service.list_seed_letters(CLINICIAN, SUBSPECIALTY)
    assert len(letters) == 2
    assert all(letter["analyzed_at"] is not None for letter in letters)
    assert service.audit.recent("style.seed_letters_analyzed")


def test_failed_seed_analysis_can_be_retried(learner, make_analyzer):
    from letterstyle.style.errors import AnalysisError, InsufficientDataError

    learner.service.add_seed_letter(CLINICIAN, SUBSPECIALTY, "Plan:\nWill arrange echo.")
    learner.analyzer = make_analyzer(error=RuntimeError("timeout"))
    with pytest.raises(AnalysisError):
        learner.analyze_seed_letters(CLINICIAN, SUBSPECIALTY)
    assert learner.service.list_seed_letters(CLINICIAN)[0]["analyzed_at"] is None

    learner.analyzer = make_analyzer()
    learner.analyze_seed_letters(CLINICIAN, SUBSPECIALTY)
    with pytest.raises(InsufficientDataError):
        learner.analyze_seed_letters(CLINICIAN, SUBSPECIALTY)


def test_seed_letter_validation_and_delete(service):
    from letterstyle.style.errors import ValidationError

    with pytest.raises(ValidationError):
        service.add_seed_letter(CLINICIAN, SUBSPECIALTY, "   ")

    seed_id = service.add_seed_letter(CLINICIAN, SUBSPECIALTY, "Plan:\nReview.")
    assert service.delete_seed_letter("someone-else", seed_id) is False
    assert service.delete_seed_letter(CLINICIAN, seed_id) is True
    assert service.list_seed_letters(CLINICIAN) == []


def test_seed_and_aggregate_listings(service, session_factory):
    from letterstyle.style.store import AggregateStore

    service.add_seed_letter(CLINICIAN, SUBSPECIALTY, "Plan:\nReview.")
    service.add_seed_letter(CLINICIAN, "IMAGING", "Impression:\nNormal study.")
    listed = service.seeds.list_for_clinician(CLINICIAN, "IMAGING")
    assert [s["subspecialty"] for s in listed] == ["IMAGING"]
    assert len(service.seeds.list_for_clinician(CLINICIAN)) == 2

    aggregates = AggregateStore(session_factory)
    data = {
        "common_additions": [], "common_deletions": [], "section_order_patterns": [],
        "phrasing_patterns": [], "sample_size": 12,
    }
    aggregates.upsert(SUBSPECIALTY, "2024-W10", data)
    aggregates.upsert(SUBSPECIALTY, "2024-W11", data)
    assert len(aggregates.list_for_subspecialty(SUBSPECIALTY, limit=1)) == 1
    assert aggregates.list_for_subspecialty("IMAGING") == []


def test_import_analysis(learner, analysis_reply):
    from letterstyle.style.errors import AnalysisError

    for n in range(1, 4):
        _approve(learner, n)

    profile = learner.import_analysis(CLINICIAN, SUBSPECIALTY, analysis_reply())
    assert profile.total_edits_analyzed == 3
    assert learner.analyzer.calls == []

    with pytest.raises(AnalysisError):
        learner.import_analysis(CLINICIAN, SUBSPECIALTY, "not a reply")
    assert learner.service.get_profile(CLINICIAN, SUBSPECIALTY).total_edits_analyzed == 3
