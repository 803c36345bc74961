"""SQLite persistence for edits, profiles, seed letters, aggregates and audit rows.

Every store takes a session factory so tests can point it at an in-memory
engine.
"""

import datetime
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from letterstyle.models import (
    AuditLog,
    StyleAnalyticsAggregateRow,
    StyleEdit,
    StyleProfileRow,
    StyleSeedLetter,
)
from letterstyle.style.diff import SectionDiff
from letterstyle.style.errors import ProfileNotFoundError, StaleProfileError
from letterstyle.style.profile import StyleProfile, normalize_confidence

logger = logging.getLogger(__name__)

# Sentinel for "don't compare-and-swap"
ANY_VERSION = object()

_PROFILE_FIELDS = (
    "section_order",
    "section_inclusion",
    "section_verbosity",
    "phrasing_preferences",
    "avoided_phrases",
    "vocabulary_map",
    "terminology_level",
    "greeting_style",
    "closing_style",
    "signoff_template",
    "formality_level",
    "paragraph_structure",
    "confidence",
    "learning_strength",
    "total_edits_analyzed",
    "last_analyzed_at",
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.utcnow()


# ── Audit ─────────────────────────────────────────────────────────────────

class AuditTrail:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def record(
        self,
        action: str,
        resource_type: str,
        resource_id: str | None = None,
        clinician_id: str | None = None,
        details: dict | None = None,
    ):
        with self._session_factory() as session:
            session.add(AuditLog(
                clinician_id=clinician_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details,
            ))
            session.commit()

    def recent(self, action: str | None = None, limit: int = 50) -> list[dict]:
        with self._session_factory() as session:
            q = session.query(AuditLog)
            if action:
                q = q.filter(AuditLog.action == action)
            rows = q.order_by(AuditLog.id.desc()).limit(limit).all()
            return [
                {
                    "action": r.action,
                    "resource_type": r.resource_type,
                    "resource_id": r.resource_id,
                    "clinician_id": r.clinician_id,
                    "details": r.details,
                    "created_at": r.created_at,
                }
                for r in rows
            ]


# ── Edit log ──────────────────────────────────────────────────────────────

class EditLog:
    """Append-only log of section-level edits."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def append(self, clinician_id: str, letter_id: str, subspecialty: str, diffs: list[SectionDiff]) -> int:
        rows = [
            StyleEdit(
                clinician_id=clinician_id,
                letter_id=letter_id,
                subspecialty=subspecialty,
                before_text=d.draft_content or "",
                after_text=d.final_content or "",
                edit_type=d.status,
                section_type=d.section_type,
                character_changes=abs(d.total_char_delta),
                word_changes=abs(d.total_word_delta),
            )
            for d in diffs
            if d.status != "unchanged" and ((d.draft_content or "").strip() or (d.final_content or "").strip())
        ]
        if not rows:
            return 0
        with self._session_factory() as session:
            session.add_all(rows)
            session.commit()
        return len(rows)

    def count(self, clinician_id: str, subspecialty: str) -> int:
        with self._session_factory() as session:
            return (
                session.query(func.count(StyleEdit.id))
                .filter(StyleEdit.clinician_id == clinician_id, StyleEdit.subspecialty == subspecialty)
                .scalar()
            ) or 0

    def recent(self, clinician_id: str, subspecialty: str, limit: int) -> list[StyleEdit]:
        with self._session_factory() as session:
            rows = (
                session.query(StyleEdit)
                .filter(StyleEdit.clinician_id == clinician_id, StyleEdit.subspecialty == subspecialty)
                .order_by(StyleEdit.created_at.desc(), StyleEdit.id.desc())
                .limit(limit)
                .all()
            )
            session.expunge_all()
            return rows

    def in_period(self, subspecialty: str, start: datetime.datetime, end: datetime.datetime) -> list[StyleEdit]:
        with self._session_factory() as session:
            rows = (
                session.query(StyleEdit)
                .filter(
                    StyleEdit.subspecialty == subspecialty,
                    StyleEdit.created_at >= start,
                    StyleEdit.created_at <= end,
                )
                .order_by(StyleEdit.id)
                .all()
            )
            session.expunge_all()
            return rows

    def statistics(self, clinician_id: str, subspecialty: str, now: datetime.datetime | None = None) -> dict:
        now = now or _utcnow()
        with self._session_factory() as session:
            base = session.query(StyleEdit).filter(
                StyleEdit.clinician_id == clinician_id,
                StyleEdit.subspecialty == subspecialty,
            )
            total = base.count()
            last_7 = base.filter(StyleEdit.created_at >= now - datetime.timedelta(days=7)).count()
            last_30 = base.filter(StyleEdit.created_at >= now - datetime.timedelta(days=30)).count()
            last_edit = base.with_entities(func.max(StyleEdit.created_at)).scalar()
        return {
            "total_edits": total,
            "edits_last_7_days": last_7,
            "edits_last_30_days": last_30,
            "last_edit_date": last_edit,
        }


# ── Profiles ──────────────────────────────────────────────────────────────

def _row_to_profile(row: StyleProfileRow) -> StyleProfile:
    return StyleProfile(
        id=row.id,
        clinician_id=row.clinician_id,
        subspecialty=row.subspecialty,
        section_order=list(row.section_order or []),
        section_inclusion=dict(row.section_inclusion or {}),
        section_verbosity=dict(row.section_verbosity or {}),
        phrasing_preferences={k: list(v) for k, v in (row.phrasing_preferences or {}).items()},
        avoided_phrases={k: list(v) for k, v in (row.avoided_phrases or {}).items()},
        vocabulary_map=dict(row.vocabulary_map or {}),
        terminology_level=row.terminology_level,
        greeting_style=row.greeting_style,
        closing_style=row.closing_style,
        signoff_template=row.signoff_template,
        formality_level=row.formality_level,
        paragraph_structure=row.paragraph_structure,
        confidence=normalize_confidence(row.confidence),
        learning_strength=row.learning_strength if row.learning_strength is not None else 1.0,
        total_edits_analyzed=row.total_edits_analyzed or 0,
        last_analyzed_at=row.last_analyzed_at,
    )


class ProfileStore:
    """Authoritative profile rows, one per (clinician, subspecialty)."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def get(self, clinician_id: str, subspecialty: str) -> StyleProfile | None:
        with self._session_factory() as session:
            row = session.query(StyleProfileRow).filter_by(
                clinician_id=clinician_id, subspecialty=subspecialty,
            ).first()
            return _row_to_profile(row) if row else None

    def list_for_clinician(self, clinician_id: str) -> list[StyleProfile]:
        with self._session_factory() as session:
            rows = (
                session.query(StyleProfileRow)
                .filter_by(clinician_id=clinician_id)
                .order_by(StyleProfileRow.subspecialty)
                .all()
            )
            return [_row_to_profile(r) for r in rows]

    def save(self, profile: StyleProfile, expected_edits_analyzed=ANY_VERSION) -> StyleProfile:
        """Upsert a profile.

        ``expected_edits_analyzed`` enables compare-and-swap: pass the
        ``total_edits_analyzed`` seen before merging (None if no profile
        existed). A mismatch raises StaleProfileError and nothing is written.
        """
        with self._session_factory() as session:
            row = session.query(StyleProfileRow).filter_by(
                clinician_id=profile.clinician_id, subspecialty=profile.subspecialty,
            ).first()

            if expected_edits_analyzed is not ANY_VERSION:
                current = row.total_edits_analyzed if row else None
                if current != expected_edits_analyzed:
                    raise StaleProfileError(
                        f"Profile {profile.clinician_id}:{profile.subspecialty} changed "
                        f"(expected {expected_edits_analyzed}, found {current})"
                    )

            if row is None:
                row = StyleProfileRow(clinician_id=profile.clinician_id, subspecialty=profile.subspecialty)
                session.add(row)
            for name in _PROFILE_FIELDS:
                setattr(row, name, getattr(profile, name))
            row.confidence = normalize_confidence(profile.confidence)

            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise StaleProfileError(
                    f"Profile {profile.clinician_id}:{profile.subspecialty} was created concurrently"
                ) from e
            return _row_to_profile(row)

    def set_learning_strength(self, clinician_id: str, subspecialty: str, strength: float) -> StyleProfile:
        with self._session_factory() as session:
            row = session.query(StyleProfileRow).filter_by(
                clinician_id=clinician_id, subspecialty=subspecialty,
            ).first()
            if row is None:
                raise ProfileNotFoundError(f"No style profile found for subspecialty {subspecialty}")
            row.learning_strength = strength
            session.commit()
            return _row_to_profile(row)

    def delete(self, clinician_id: str, subspecialty: str) -> bool:
        with self._session_factory() as session:
            row = session.query(StyleProfileRow).filter_by(
                clinician_id=clinician_id, subspecialty=subspecialty,
            ).first()
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True


# ── Seed letters ──────────────────────────────────────────────────────────

class SeedLetterStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def add(self, clinician_id: str, subspecialty: str, letter_text: str) -> int:
        with self._session_factory() as session:
            row = StyleSeedLetter(clinician_id=clinician_id, subspecialty=subspecialty, letter_text=letter_text)
            session.add(row)
            session.commit()
            return row.id

    def list_for_clinician(self, clinician_id: str, subspecialty: str | None = None) -> list[dict]:
        with self._session_factory() as session:
            q = session.query(StyleSeedLetter).filter_by(clinician_id=clinician_id)
            if subspecialty:
                q = q.filter_by(subspecialty=subspecialty)
            return [
                {
                    "id": r.id,
                    "subspecialty": r.subspecialty,
                    "chars": len(r.letter_text),
                    "analyzed_at": r.analyzed_at,
                    "created_at": r.created_at,
                }
                for r in q.order_by(StyleSeedLetter.created_at.desc()).all()
            ]

    def delete(self, clinician_id: str, seed_letter_id: int) -> bool:
        with self._session_factory() as session:
            row = session.query(StyleSeedLetter).filter_by(id=seed_letter_id, clinician_id=clinician_id).first()
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def unanalyzed(self, clinician_id: str, subspecialty: str, limit: int) -> list[tuple[int, str]]:
        with self._session_factory() as session:
            rows = (
                session.query(StyleSeedLetter)
                .filter_by(clinician_id=clinician_id, subspecialty=subspecialty, analyzed_at=None)
                .order_by(StyleSeedLetter.created_at.desc(), StyleSeedLetter.id.desc())
                .limit(limit)
                .all()
            )
            return [(r.id, r.letter_text) for r in rows]

    def mark_analyzed(self, ids: list[int]):
        if not ids:
            return
        with self._session_factory() as session:
            session.query(StyleSeedLetter).filter(StyleSeedLetter.id.in_(ids)).update(
                {StyleSeedLetter.analyzed_at: _utcnow()}, synchronize_session=False,
            )
            session.commit()


# ── Aggregates ────────────────────────────────────────────────────────────

def _aggregate_to_dict(row: StyleAnalyticsAggregateRow) -> dict:
    return {
        "id": row.id,
        "subspecialty": row.subspecialty,
        "period": row.period,
        "common_additions": row.common_additions or [],
        "common_deletions": row.common_deletions or [],
        "section_order_patterns": row.section_order_patterns or [],
        "phrasing_patterns": row.phrasing_patterns or [],
        "sample_size": row.sample_size,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


class AggregateStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def upsert(self, subspecialty: str, period: str, data: dict) -> dict:
        with self._session_factory() as session:
            row = session.query(StyleAnalyticsAggregateRow).filter_by(
                subspecialty=subspecialty, period=period,
            ).first()
            if row is None:
                row = StyleAnalyticsAggregateRow(subspecialty=subspecialty, period=period)
                session.add(row)
            row.common_additions = data["common_additions"]
            row.common_deletions = data["common_deletions"]
            row.section_order_patterns = data["section_order_patterns"]
            row.phrasing_patterns = data["phrasing_patterns"]
            row.sample_size = data["sample_size"]
            row.updated_at = _utcnow()
            session.commit()
            return _aggregate_to_dict(row)

    def list_for_subspecialty(self, subspecialty: str, limit: int = 10) -> list[dict]:
        with self._session_factory() as session:
            rows = (
                session.query(StyleAnalyticsAggregateRow)
                .filter_by(subspecialty=subspecialty)
                .order_by(StyleAnalyticsAggregateRow.updated_at.desc(), StyleAnalyticsAggregateRow.id.desc())
                .limit(limit)
                .all()
            )
            return [_aggregate_to_dict(r) for r in rows]

    def latest_per_subspecialty(self) -> list[dict]:
        with self._session_factory() as session:
            rows = (
                session.query(StyleAnalyticsAggregateRow)
                .order_by(StyleAnalyticsAggregateRow.updated_at.desc(), StyleAnalyticsAggregateRow.id.desc())
                .all()
            )
            latest = {}
            for r in rows:
                latest.setdefault(r.subspecialty, _aggregate_to_dict(r))
            return list(latest.values())
