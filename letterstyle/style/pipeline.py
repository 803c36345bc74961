"""Online learning path: record edits on approval, decide when to analyze,
run the analyzer and merge its result into the stored profile.

Approval must never fail because of style learning, so ``on_letter_approved``
logs and swallows everything, and analysis runs are submitted to a
background ``AnalysisQueue`` (fire-and-forget, at most once per key while
one is pending).
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

from letterstyle.config import settings
from letterstyle.style.analyzer import (
    EDIT_ANALYSIS_SYSTEM_PROMPT,
    SEED_ANALYSIS_SYSTEM_PROMPT,
    EditSample,
    StyleAnalyzer,
    build_edit_analysis_prompt,
    build_seed_analysis_prompt,
    parse_analysis_response,
    run_analyzer,
    to_analysis_result,
)
from letterstyle.style.cache import cache_key
from letterstyle.style.diff import LetterDiff, SectionDiff, analyze_diff, diff_section
from letterstyle.style.errors import (
    AnalysisError,
    InsufficientDataError,
    StaleProfileError,
)
from letterstyle.style.merger import merge_profile
from letterstyle.style.phrases import summarize_signals
from letterstyle.style.profile import AnalysisResult, StyleProfile
from letterstyle.style.profiles import RESOURCE_PROFILE, ProfileService, stamp_analyzed
from letterstyle.style.sections import Section

logger = logging.getLogger(__name__)

MIN_EDITS_FOR_ANALYSIS = 5
ANALYSIS_INTERVAL = 10
MAX_EDITS_PER_ANALYSIS = 50


@dataclass
class AnalysisDecision:
    should_analyze: bool
    edit_count: int
    reason: str

    def to_dict(self) -> dict:
        return {"should_analyze": self.should_analyze, "edit_count": self.edit_count, "reason": self.reason}


@dataclass
class ApprovalOutcome:
    edits_recorded: int
    analysis_due: bool
    analysis_queued: bool
    reason: str

    def to_dict(self) -> dict:
        return {
            "edits_recorded": self.edits_recorded,
            "analysis_due": self.analysis_due,
            "analysis_queued": self.analysis_queued,
            "reason": self.reason,
        }


def should_trigger_analysis(
    profile_exists: bool,
    total_edits_analyzed: int,
    current_count: int,
    min_edits: int = MIN_EDITS_FOR_ANALYSIS,
    interval: int = ANALYSIS_INTERVAL,
) -> AnalysisDecision:
    """Threshold check, no side effects.

    Without a profile, analyze once ``min_edits`` edits exist. With one,
    analyze every ``interval`` new edits.
    """
    if not profile_exists:
        if current_count >= min_edits:
            return AnalysisDecision(True, current_count, "Initial profile creation (minimum edits reached)")
        return AnalysisDecision(
            False, current_count, f"Need {min_edits - current_count} more edits for initial analysis",
        )

    new_edits = current_count - total_edits_analyzed
    if new_edits >= interval:
        return AnalysisDecision(True, new_edits, f"{new_edits} new edits since last analysis")
    return AnalysisDecision(False, new_edits, f"Need {interval - new_edits} more edits for next analysis")


def _edit_as_diff(edit) -> SectionDiff:
    section_type = edit.section_type or "other"
    before = edit.before_text or ""
    after = edit.after_text or ""
    draft = Section(section_type, None, before, 0, len(before)) if edit.edit_type != "added" else None
    final = Section(section_type, None, after, 0, len(after)) if edit.edit_type != "removed" else None
    return diff_section(draft, final)


class StyleLearner:
    """Edit recording, scheduling and analysis for one database.

    Thresholds are read through the layered config store on every call so
    operators can tune them without a restart.
    """

    def __init__(self, service: ProfileService, analyzer: StyleAnalyzer | None = None, config=None):
        self.service = service
        self.analyzer = analyzer
        self._config = config
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def config(self):
        if self._config is None:
            from letterstyle.config_store import get_config_store
            self._config = get_config_store()
        return self._config

    def _lock_for(self, clinician_id: str, subspecialty: str) -> threading.Lock:
        key = cache_key(clinician_id, subspecialty)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    # ── Recording ─────────────────────────────────────────────────────────

    def record_edits(
        self,
        clinician_id: str,
        letter_id: str,
        subspecialty: str,
        draft_text: str,
        final_text: str,
    ) -> tuple[int, LetterDiff]:
        """Diff the draft against the approved letter and log every changed section."""
        diff = analyze_diff(draft_text, final_text, letter_id=letter_id, subspecialty=subspecialty)
        count = self.service.edits.append(clinician_id, letter_id, subspecialty, diff.section_diffs)

        if count:
            self.service.audit.record(
                "style.subspecialty_edits_recorded",
                "letter",
                resource_id=letter_id,
                clinician_id=clinician_id,
                details={
                    "subspecialty": subspecialty,
                    "edits_recorded": count,
                    "sections_added": diff.stats.sections_added,
                    "sections_removed": diff.stats.sections_removed,
                    "sections_modified": diff.stats.sections_modified,
                },
            )
        logger.info("Recorded %d style edit(s) for letter %s (%s/%s)", count, letter_id, clinician_id, subspecialty)
        return count, diff

    # ── Scheduling ────────────────────────────────────────────────────────

    def check_analysis(self, clinician_id: str, subspecialty: str) -> AnalysisDecision:
        profile = self.service.profiles.get(clinician_id, subspecialty)
        # An empty profile (e.g. created only to set a strength) has learned nothing yet
        learned = profile is not None and profile.total_edits_analyzed > 0
        return should_trigger_analysis(
            learned,
            profile.total_edits_analyzed if profile else 0,
            self.service.edits.count(clinician_id, subspecialty),
            min_edits=self.config.get_int("min_edits_for_analysis"),
            interval=self.config.get_int("analysis_interval"),
        )

    # ── Analysis ──────────────────────────────────────────────────────────

    def _require_analyzer(self) -> StyleAnalyzer:
        if self.analyzer is None:
            raise AnalysisError("No style analyzer configured")
        return self.analyzer

    def _persist(self, existing: StyleProfile | None, result: AnalysisResult) -> StyleProfile:
        merged = merge_profile(existing, result, cap=settings.max_phrases_per_section)
        stamp_analyzed(merged, result.analyzed_at)
        expected = existing.total_edits_analyzed if existing is not None else None
        try:
            return self.service.save_profile(merged, expected_edits_analyzed=expected)
        except StaleProfileError:
            logger.warning(
                "Discarding stale merge for %s/%s (profile changed during analysis)",
                result.clinician_id, result.subspecialty,
            )
            self.service.cache.invalidate(result.clinician_id, result.subspecialty)
            raise

    def _record_completed(self, profile: StyleProfile, result: AnalysisResult, source: str):
        self.service.audit.record(
            "style.subspecialty_analysis_completed",
            RESOURCE_PROFILE,
            resource_id=str(profile.id),
            clinician_id=profile.clinician_id,
            details={
                "subspecialty": profile.subspecialty,
                "source": source,
                "edits_analyzed": result.edits_analyzed,
                "total_edits_analyzed": profile.total_edits_analyzed,
                "model_used": result.model_used,
                "insights": result.insights,
            },
        )
        logger.info(
            "Style analysis (%s) complete for %s/%s: %d edit(s), total %d",
            source, profile.clinician_id, profile.subspecialty,
            result.edits_analyzed, profile.total_edits_analyzed,
        )

    def run_analysis(self, clinician_id: str, subspecialty: str, force: bool = False) -> StyleProfile:
        """Analyze the most recent edits and merge the result into the profile.

        On any analyzer failure the stored profile is left untouched.
        """
        analyzer = self._require_analyzer()
        with self._lock_for(clinician_id, subspecialty):
            existing = self.service.profiles.get(clinician_id, subspecialty)
            total = existing.total_edits_analyzed if existing else 0
            count = self.service.edits.count(clinician_id, subspecialty)
            min_edits = self.config.get_int("min_edits_for_analysis")
            max_edits = self.config.get_int("max_edits_per_analysis")

            if count == 0 or (not force and count < min_edits):
                raise InsufficientDataError(
                    f"Need at least {min_edits} edits for analysis, have {count}"
                )

            pending = count - total
            batch = self.service.edits.recent(clinician_id, subspecialty, min(max_edits, max(pending, min_edits)))
            samples = [EditSample(e.before_text, e.after_text, e.section_type, e.edit_type) for e in batch]
            signals = summarize_signals([_edit_as_diff(e) for e in batch])
            prompt = build_edit_analysis_prompt(samples, subspecialty, signals)

            logger.info("Analyzing %d edit(s) for %s/%s", len(samples), clinician_id, subspecialty)
            result = run_analyzer(
                analyzer, prompt, EDIT_ANALYSIS_SYSTEM_PROMPT, clinician_id, subspecialty, len(samples),
            )
            profile = self._persist(existing, result)

        self._record_completed(profile, result, "edits")
        return profile

    def analyze_seed_letters(self, clinician_id: str, subspecialty: str) -> StyleProfile:
        """Bootstrap (or refine) a profile from uploaded historical letters."""
        analyzer = self._require_analyzer()
        with self._lock_for(clinician_id, subspecialty):
            letters = self.service.seeds.unanalyzed(
                clinician_id, subspecialty, settings.max_seed_letters_per_analysis,
            )
            if not letters:
                raise InsufficientDataError(f"No unanalyzed seed letters for {subspecialty}")

            prompt = build_seed_analysis_prompt([text for _, text in letters], subspecialty)
            result = run_analyzer(
                analyzer, prompt, SEED_ANALYSIS_SYSTEM_PROMPT, clinician_id, subspecialty, len(letters),
            )
            existing = self.service.profiles.get(clinician_id, subspecialty)
            profile = self._persist(existing, result)
            # Only mark once the merge is stored, so a failed run can be retried
            self.service.seeds.mark_analyzed([seed_id for seed_id, _ in letters])

        self.service.audit.record(
            "style.seed_letters_analyzed",
            RESOURCE_PROFILE,
            resource_id=str(profile.id),
            clinician_id=clinician_id,
            details={"subspecialty": subspecialty, "letters_analyzed": len(letters), "model_used": result.model_used},
        )
        self._record_completed(profile, result, "seed_letters")
        return profile

    def import_analysis(
        self,
        clinician_id: str,
        subspecialty: str,
        content: str,
        edits_analyzed: int | None = None,
        model_used: str = "imported",
    ) -> StyleProfile:
        """Apply a stored analyzer reply through the normal parse/merge path."""
        with self._lock_for(clinician_id, subspecialty):
            existing = self.service.profiles.get(clinician_id, subspecialty)
            if edits_analyzed is None:
                total = existing.total_edits_analyzed if existing else 0
                edits_analyzed = max(1, self.service.edits.count(clinician_id, subspecialty) - total)

            outcome = parse_analysis_response(content)
            result = to_analysis_result(outcome, clinician_id, subspecialty, edits_analyzed, model_used)
            profile = self._persist(existing, result)

        self._record_completed(profile, result, "import")
        return profile

    # ── Approval hook ─────────────────────────────────────────────────────

    def on_letter_approved(
        self,
        clinician_id: str,
        letter_id: str,
        subspecialty: str,
        draft_text: str,
        final_text: str,
        queue: "AnalysisQueue | None" = None,
    ) -> ApprovalOutcome:
        """Best-effort learning hook for the approval workflow. Never raises."""
        try:
            count, _ = self.record_edits(clinician_id, letter_id, subspecialty, draft_text, final_text)
            decision = self.check_analysis(clinician_id, subspecialty)
            queued = False
            if decision.should_analyze:
                logger.info("Analysis due for %s/%s: %s", clinician_id, subspecialty, decision.reason)
                if queue is not None:
                    queued = queue.submit(clinician_id, subspecialty)
            return ApprovalOutcome(count, decision.should_analyze, queued, decision.reason)
        except Exception:
            logger.exception("Style learning failed for letter %s (approval unaffected)", letter_id)
            return ApprovalOutcome(0, False, False, "Style learning unavailable")


class AnalysisQueue:
    """Fire-and-forget analysis runs on a small thread pool.

    Delivery is at most once and best effort: a key already waiting or
    running is not queued again, and failures are only logged. The outcome
    shows up on the next profile read.
    """

    def __init__(self, learner: StyleLearner, max_workers: int | None = None):
        self.learner = learner
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.analysis_workers,
            thread_name_prefix="style-analysis",
        )
        self._pending: set[str] = set()
        self._lock = threading.Lock()
        self._futures: list[Future] = []

    def submit(self, clinician_id: str, subspecialty: str, force: bool = False) -> bool:
        key = cache_key(clinician_id, subspecialty)
        with self._lock:
            if key in self._pending:
                logger.debug("Analysis already pending for %s", key)
                return False
            self._pending.add(key)
            self._futures = [f for f in self._futures if not f.done()]
            self._futures.append(self._executor.submit(self._run, clinician_id, subspecialty, force))
        return True

    def _run(self, clinician_id: str, subspecialty: str, force: bool) -> StyleProfile | None:
        try:
            return self.learner.run_analysis(clinician_id, subspecialty, force=force)
        except InsufficientDataError as e:
            logger.info("Skipped analysis for %s/%s: %s", clinician_id, subspecialty, e)
        except StaleProfileError:
            pass  # already logged by the learner
        except Exception:
            logger.exception("Background analysis failed for %s/%s", clinician_id, subspecialty)
        finally:
            with self._lock:
                self._pending.discard(cache_key(clinician_id, subspecialty))
        return None

    def wait(self, timeout: float | None = None):
        """Block until everything submitted so far has finished."""
        with self._lock:
            futures = list(self._futures)
        for f in futures:
            f.result(timeout=timeout)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
