"""De-identified, cross-clinician style analytics.

An aggregate is only produced when the cohort is large enough that no single
clinician can be picked out (at least ``min_clinicians`` distinct clinicians
and ``min_sample_size`` edits). Every phrase is PHI-scrubbed before it is
counted, and nothing identifying a clinician or letter is ever stored.
"""

import datetime
import logging
import re
from collections import Counter, defaultdict

from letterstyle.config import settings
from letterstyle.style.diff import align_sections
from letterstyle.style.errors import AnonymityThresholdError
from letterstyle.style.scrubber import sanitize_phrase
from letterstyle.style.sections import parse_letter_sections
from letterstyle.style.store import AggregateStore, AuditTrail, EditLog

logger = logging.getLogger(__name__)

MIN_CLINICIANS_FOR_AGGREGATION = 5
MIN_EDITS_FOR_AGGREGATION = 10
MIN_PATTERN_FREQUENCY = 2
MAX_PATTERNS_PER_CATEGORY = 50
MAX_SECTION_ORDER_PATTERNS = 20
MIN_PHRASING_PATTERN_CHARS = 10

ORDER_SEPARATOR = "→"

_CLAUSE_SPLIT_RE = re.compile(r"[.!?;]")


# ── Text helpers ──────────────────────────────────────────────────────────

def extract_key_phrases(text: str) -> list[str]:
    """3-8 word clauses plus 4-word windows of at least 15 characters."""
    phrases = []
    for clause in _CLAUSE_SPLIT_RE.split(text):
        trimmed = clause.strip()
        if not trimmed:
            continue
        words = trimmed.split()
        if 3 <= len(words) <= 8:
            phrases.append(trimmed)
        for i in range(len(words) - 2):
            window = " ".join(words[i:i + 4])
            if len(window) >= 15:
                phrases.append(window)
    return list(dict.fromkeys(phrases))


def _new_word_runs(source: str, reference: str) -> list[str]:
    """Runs of 2+ consecutive words from ``source`` absent from ``reference``."""
    known = set(reference.lower().split())
    runs, current = [], []
    for word in source.split():
        if word.lower() not in known and len(word) > 2:
            current.append(word)
            continue
        if len(current) >= 2:
            runs.append(" ".join(current))
        current = []
    if len(current) >= 2:
        runs.append(" ".join(current))
    return runs


def find_added_content(original: str, modified: str) -> list[str]:
    return _new_word_runs(modified, original)


def find_removed_content(original: str, modified: str) -> list[str]:
    return _new_word_runs(original, modified)


def format_period(date: datetime.date) -> str:
    """ISO calendar week label, e.g. ``2024-W01``."""
    iso = date.isocalendar()
    return f"{iso[0]}-W{iso[1]:02d}"


# ── Pattern mining ────────────────────────────────────────────────────────

class _PatternCounter:
    def __init__(self):
        self.counts = Counter()
        self.clinicians = defaultdict(set)

    def add(self, key, clinician_id: str):
        self.counts[key] += 1
        self.clinicians[key].add(clinician_id)

    def frequent(self, min_frequency: int):
        for key, count in self.counts.items():
            if count >= min_frequency:
                yield key, count, len(self.clinicians[key])


def _percentage(clinician_count: int, total_clinicians: int) -> int:
    return round(clinician_count / total_clinicians * 100) if total_clinicians else 0


def _ranked(patterns: list[dict], cap: int) -> list[dict]:
    # sorted() is stable, so equal frequencies keep first-seen order
    return sorted(patterns, key=lambda p: p["frequency"], reverse=True)[:cap]


def _section_pairs(edit):
    """Re-parse one edit and yield (section_type, draft_content, final_content)."""
    for draft, final in align_sections(
        parse_letter_sections(edit.before_text or ""),
        parse_letter_sections(edit.after_text or ""),
    ):
        section = draft if draft is not None else final
        section_type = section.type
        # Edits hold a single section body, so untitled text keeps its recorded type
        if section_type == "other" and edit.section_type:
            section_type = edit.section_type
        yield (
            section_type,
            draft.content if draft is not None else None,
            final.content if final is not None else None,
        )


def _changed_fragments(draft: str | None, final: str | None) -> tuple[list[str], list[str]]:
    """(added, removed) candidate phrases for one aligned section pair."""
    if draft is None:
        return extract_key_phrases(final or ""), []
    if final is None:
        return [], extract_key_phrases(draft)
    if draft == final:
        return [], []
    return find_added_content(draft, final), find_removed_content(draft, final)


def mine_patterns(
    edits: list,
    total_clinicians: int,
    min_frequency: int = MIN_PATTERN_FREQUENCY,
    cap: int = MAX_PATTERNS_PER_CATEGORY,
) -> dict:
    additions = _PatternCounter()
    deletions = _PatternCounter()
    phrasing = _PatternCounter()
    orders = Counter()

    for edit in edits:
        if edit.after_text:
            order = [s.type for s in parse_letter_sections(edit.after_text) if s.type != "other"]
            if len(order) >= 2:
                orders[ORDER_SEPARATOR.join(order)] += 1

        for section_type, draft, final in _section_pairs(edit):
            added, removed = _changed_fragments(draft, final)
            for action, counter, fragments in (
                ("added", additions, added),
                ("removed", deletions, removed),
            ):
                for phrase in fragments:
                    clean = sanitize_phrase(phrase)
                    if not clean:
                        continue
                    counter.add((section_type, clean.lower()), edit.clinician_id)
                    if len(clean) >= MIN_PHRASING_PATTERN_CHARS:
                        phrasing.add((action, section_type, clean.lower()), edit.clinician_id)

    def _section_patterns(counter: _PatternCounter) -> list[dict]:
        return _ranked([
            {
                "pattern": phrase,
                "section_type": section_type,
                "frequency": count,
                "clinician_count": clinicians,
                "percentage_of_clinicians": _percentage(clinicians, total_clinicians),
            }
            for (section_type, phrase), count, clinicians in counter.frequent(min_frequency)
        ], cap)

    return {
        "common_additions": _section_patterns(additions),
        "common_deletions": _section_patterns(deletions),
        "section_order_patterns": _ranked([
            {"order": key.split(ORDER_SEPARATOR), "frequency": count}
            for key, count in orders.items()
            if count >= min_frequency
        ], MAX_SECTION_ORDER_PATTERNS),
        "phrasing_patterns": _ranked([
            {
                "phrase": phrase,
                "section_type": section_type,
                "action": action,
                "frequency": count,
                "clinician_count": clinicians,
                "percentage_of_clinicians": _percentage(clinicians, total_clinicians),
            }
            for (action, section_type, phrase), count, clinicians in phrasing.frequent(min_frequency)
        ], cap),
    }


# ── Aggregation jobs ──────────────────────────────────────────────────────

class AnalyticsAggregator:
    def __init__(self, session_factory, config=None):
        self.edits = EditLog(session_factory)
        self.aggregates = AggregateStore(session_factory)
        self.audit = AuditTrail(session_factory)
        self._config = config

    @property
    def config(self):
        if self._config is None:
            from letterstyle.config_store import get_config_store
            self._config = get_config_store()
        return self._config

    def aggregate(
        self,
        subspecialty: str,
        period_start: datetime.datetime,
        period_end: datetime.datetime,
        min_sample_size: int | None = None,
    ) -> dict | None:
        """Mine and upsert the aggregate for one subspecialty and period.

        Returns None, without writing anything, when the cohort is too small.
        """
        min_clinicians = self.config.get_int("min_clinicians_for_aggregation")
        if min_sample_size is None:
            min_sample_size = self.config.get_int("min_edits_for_aggregation")

        edits = self.edits.in_period(subspecialty, period_start, period_end)
        clinicians = {e.clinician_id for e in edits}
        logger.info(
            "Aggregating %s: %d edit(s) from %d clinician(s)", subspecialty, len(edits), len(clinicians),
        )

        if len(clinicians) < min_clinicians:
            logger.info(
                "Skipping %s: %d clinician(s), need %d for anonymity",
                subspecialty, len(clinicians), min_clinicians,
            )
            return None
        if len(edits) < min_sample_size:
            logger.info("Skipping %s: %d edit(s), need %d", subspecialty, len(edits), min_sample_size)
            return None

        patterns = mine_patterns(
            edits,
            len(clinicians),
            min_frequency=self.config.get_int("min_pattern_frequency"),
            cap=self.config.get_int("max_patterns_per_category"),
        )
        period = format_period(period_start)
        aggregate = self.aggregates.upsert(subspecialty, period, {**patterns, "sample_size": len(edits)})

        self.audit.record(
            "analytics.style_aggregated",
            "style_analytics",
            resource_id=str(aggregate["id"]),
            details={
                "subspecialty": subspecialty,
                "period": period,
                "sample_size": len(edits),
                "unique_clinicians": len(clinicians),
                "patterns_found": {
                    "additions": len(patterns["common_additions"]),
                    "deletions": len(patterns["common_deletions"]),
                    "section_order": len(patterns["section_order_patterns"]),
                    "phrasing": len(patterns["phrasing_patterns"]),
                },
            },
        )
        logger.info("Style analytics aggregated for %s (%s, %d edits)", subspecialty, period, len(edits))
        return aggregate

    def require_aggregate(self, subspecialty: str, period_start, period_end, min_sample_size: int | None = None) -> dict:
        aggregate = self.aggregate(subspecialty, period_start, period_end, min_sample_size)
        if aggregate is None:
            raise AnonymityThresholdError(
                f"Not enough clinicians or edits in {subspecialty} to publish an aggregate"
            )
        return aggregate

    def run_weekly_aggregation(self, now: datetime.datetime | None = None) -> dict:
        """Aggregate the last 7 days for every known subspecialty.

        A failure in one subspecialty is logged and counted as skipped.
        """
        now = now or datetime.datetime.utcnow()
        week_ago = now - datetime.timedelta(days=7)
        processed, skipped = [], []

        for subspecialty in settings.subspecialties:
            try:
                result = self.aggregate(subspecialty, week_ago, now)
            except Exception:
                logger.exception("Aggregation failed for %s", subspecialty)
                skipped.append(subspecialty)
                continue
            (processed if result else skipped).append(subspecialty)

        logger.info("Weekly aggregation: %d processed, %d skipped", len(processed), len(skipped))
        return {"processed": processed, "skipped": skipped}

    def get_style_analytics(self, subspecialty: str, limit: int = 10) -> list[dict]:
        return self.aggregates.list_for_subspecialty(subspecialty, limit)

    def get_analytics_summary(self) -> dict:
        latest = self.aggregates.latest_per_subspecialty()
        return {
            "subspecialties": [
                {
                    "subspecialty": a["subspecialty"],
                    "latest_period": a["period"],
                    "total_samples": a["sample_size"],
                    "top_additions": [p["pattern"] for p in a["common_additions"][:5]],
                    "top_deletions": [p["pattern"] for p in a["common_deletions"][:5]],
                }
                for a in latest
            ],
            "last_updated": max((a["updated_at"] for a in latest), default=None),
        }
