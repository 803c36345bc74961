"""Profile management: cached reads, CRUD, learning strength, seed letters.

Writers persist first and only then touch the cache, so a reader can never
see a pre-update value after a write has returned.
"""

import datetime
import logging

from letterstyle.style.cache import NullProfileCache
from letterstyle.style.conditioner import MIN_CONFIDENCE_THRESHOLD, ConditioningResult, condition
from letterstyle.style.errors import ProfileNotFoundError, ValidationError
from letterstyle.style.merger import validate_strength
from letterstyle.style.profile import StyleProfile
from letterstyle.style.store import (
    ANY_VERSION,
    AuditTrail,
    EditLog,
    ProfileStore,
    SeedLetterStore,
)

logger = logging.getLogger(__name__)

RESOURCE_PROFILE = "style_profile"
RESOURCE_SEED_LETTER = "style_seed_letter"


class ProfileService:
    def __init__(self, session_factory, cache=None):
        self.profiles = ProfileStore(session_factory)
        self.edits = EditLog(session_factory)
        self.seeds = SeedLetterStore(session_factory)
        self.audit = AuditTrail(session_factory)
        self.cache = cache if cache is not None else NullProfileCache()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_profile(self, clinician_id: str, subspecialty: str) -> StyleProfile | None:
        cached = self.cache.get(clinician_id, subspecialty)
        if cached is not None:
            return cached
        generation = self.cache.generation(clinician_id, subspecialty)
        profile = self.profiles.get(clinician_id, subspecialty)
        if profile is not None:
            self.cache.set_if_generation(profile, generation)
        return profile

    def require_profile(self, clinician_id: str, subspecialty: str) -> StyleProfile:
        profile = self.get_profile(clinician_id, subspecialty)
        if profile is None:
            raise ProfileNotFoundError(f"No style profile found for subspecialty {subspecialty}")
        return profile

    def list_profiles(self, clinician_id: str) -> list[StyleProfile]:
        return self.profiles.list_for_clinician(clinician_id)

    def get_effective_profile(self, clinician_id: str, subspecialty: str) -> tuple[StyleProfile | None, str]:
        """The profile generation should use, and where it came from.

        Only a profile that has learned something counts; otherwise the
        caller falls back to default (unconditioned) generation.
        """
        profile = self.get_profile(clinician_id, subspecialty)
        if profile is not None and profile.total_edits_analyzed > 0:
            return profile, "subspecialty"
        return None, "default"

    def condition_prompt(
        self,
        clinician_id: str,
        subspecialty: str,
        base_prompt: str = "",
        letter_type: str | None = None,
        threshold: float = MIN_CONFIDENCE_THRESHOLD,
    ) -> ConditioningResult:
        profile, _ = self.get_effective_profile(clinician_id, subspecialty)
        return condition(profile, base_prompt, letter_type=letter_type, threshold=threshold)

    def get_edit_statistics(self, clinician_id: str, subspecialty: str) -> dict:
        stats = self.edits.statistics(clinician_id, subspecialty)
        stats["subspecialty"] = subspecialty
        return stats

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_profile(self, profile: StyleProfile, expected_edits_analyzed=ANY_VERSION) -> StyleProfile:
        created = profile.id is None and self.profiles.get(profile.clinician_id, profile.subspecialty) is None
        saved = self.profiles.save(profile, expected_edits_analyzed)
        self.cache.set(saved)

        action = "style.subspecialty_profile_created" if created else "style.subspecialty_profile_updated"
        self.audit.record(
            action,
            RESOURCE_PROFILE,
            resource_id=str(saved.id),
            clinician_id=saved.clinician_id,
            details={"subspecialty": saved.subspecialty, "total_edits_analyzed": saved.total_edits_analyzed},
        )
        return saved

    def create_profile(self, clinician_id: str, subspecialty: str, learning_strength: float = 1.0) -> StyleProfile:
        """Explicitly create an empty profile (e.g. to set a strength before any learning)."""
        strength = validate_strength(learning_strength)
        existing = self.profiles.get(clinician_id, subspecialty)
        if existing is not None:
            return existing
        return self.save_profile(
            StyleProfile(clinician_id=clinician_id, subspecialty=subspecialty, learning_strength=strength),
            expected_edits_analyzed=None,
        )

    def delete_profile(self, clinician_id: str, subspecialty: str) -> bool:
        deleted = self.profiles.delete(clinician_id, subspecialty)
        self.cache.invalidate(clinician_id, subspecialty)
        if deleted:
            self.audit.record(
                "style.subspecialty_profile_deleted",
                RESOURCE_PROFILE,
                clinician_id=clinician_id,
                details={"subspecialty": subspecialty},
            )
            logger.info("Deleted style profile %s/%s", clinician_id, subspecialty)
        return deleted

    def adjust_learning_strength(self, clinician_id: str, subspecialty: str, strength) -> StyleProfile:
        value = validate_strength(strength)
        previous = self.profiles.get(clinician_id, subspecialty)
        if previous is None:
            raise ProfileNotFoundError(f"No style profile found for subspecialty {subspecialty}")

        updated = self.profiles.set_learning_strength(clinician_id, subspecialty, value)
        self.cache.set(updated)

        self.audit.record(
            "style.learning_strength_adjusted",
            RESOURCE_PROFILE,
            resource_id=str(updated.id),
            clinician_id=clinician_id,
            details={
                "subspecialty": subspecialty,
                "previous_strength": previous.learning_strength,
                "new_strength": value,
            },
        )
        logger.info("Learning strength for %s/%s set to %.2f", clinician_id, subspecialty, value)
        return updated

    # ------------------------------------------------------------------
    # Seed letters
    # ------------------------------------------------------------------

    def add_seed_letter(self, clinician_id: str, subspecialty: str, letter_text: str) -> int:
        if not letter_text or not letter_text.strip():
            raise ValidationError("Seed letter text is empty")
        seed_id = self.seeds.add(clinician_id, subspecialty, letter_text)
        self.audit.record(
            "style.seed_letter_created",
            RESOURCE_SEED_LETTER,
            resource_id=str(seed_id),
            clinician_id=clinician_id,
            details={"subspecialty": subspecialty, "chars": len(letter_text)},
        )
        return seed_id

    def list_seed_letters(self, clinician_id: str, subspecialty: str | None = None) -> list[dict]:
        return self.seeds.list_for_clinician(clinician_id, subspecialty)

    def delete_seed_letter(self, clinician_id: str, seed_letter_id: int) -> bool:
        deleted = self.seeds.delete(clinician_id, seed_letter_id)
        if deleted:
            self.audit.record(
                "style.seed_letter_deleted",
                RESOURCE_SEED_LETTER,
                resource_id=str(seed_letter_id),
                clinician_id=clinician_id,
            )
        return deleted


def stamp_analyzed(profile: StyleProfile, when: datetime.datetime | None = None) -> StyleProfile:
    profile.last_analyzed_at = when or datetime.datetime.utcnow()
    return profile
