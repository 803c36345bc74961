"""Layered config: SQLite → .env → defaults.

Usage:
    from letterstyle.config_store import get_config_store

    store = get_config_store()
    interval = store.get_int("analysis_interval")
"""

import logging

from letterstyle.config import settings
from letterstyle.models import GlobalSetting

logger = logging.getLogger(__name__)

# Operator-tunable learning thresholds, with their .env fallback attribute names
_GLOBAL_KEYS = {
    "min_edits_for_analysis": "min_edits_for_analysis",
    "analysis_interval": "analysis_interval",
    "max_edits_per_analysis": "max_edits_per_analysis",
    "min_confidence_threshold": "min_confidence_threshold",
    "min_clinicians_for_aggregation": "min_clinicians_for_aggregation",
    "min_edits_for_aggregation": "min_edits_for_aggregation",
    "min_pattern_frequency": "min_pattern_frequency",
    "max_patterns_per_category": "max_patterns_per_category",
}


class ConfigStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Global settings
    # ------------------------------------------------------------------

    def get_global(self, key: str) -> str | None:
        with self._session_factory() as session:
            row = session.query(GlobalSetting).filter_by(key=key).first()
            if row and row.value is not None:
                return row.value
        # Fall back to .env / defaults
        attr = _GLOBAL_KEYS.get(key, key)
        return str(getattr(settings, attr, "")) or None

    def get_int(self, key: str) -> int:
        value = self.get_global(key)
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning("Invalid integer for setting '%s': %r, using default", key, value)
            return int(getattr(settings, _GLOBAL_KEYS.get(key, key)))

    def get_float(self, key: str) -> float:
        value = self.get_global(key)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning("Invalid number for setting '%s': %r, using default", key, value)
            return float(getattr(settings, _GLOBAL_KEYS.get(key, key)))

    def get_all_globals(self) -> dict[str, str]:
        result = {}
        for key in _GLOBAL_KEYS:
            result[key] = self.get_global(key) or ""
        return result

    def set_global(self, key: str, value: str):
        if key not in _GLOBAL_KEYS:
            raise KeyError(f"Unknown setting '{key}'")
        with self._session_factory() as session:
            row = session.query(GlobalSetting).filter_by(key=key).first()
            if row:
                row.value = value
            else:
                session.add(GlobalSetting(key=key, value=value))
            session.commit()
        logger.info("Setting '%s' updated to %s", key, value)

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def seed_from_env(self):
        with self._session_factory() as session:
            existing = session.query(GlobalSetting).count()
            if existing > 0:
                return  # Already seeded

            for key, attr in _GLOBAL_KEYS.items():
                val = str(getattr(settings, attr, ""))
                if val:
                    session.add(GlobalSetting(key=key, value=val))

            session.commit()
            logger.info("Seeded %d global setting(s) from .env", len(_GLOBAL_KEYS))


# Module-level singleton, initialized lazily after database.py sets up SessionLocal
_config_store: ConfigStore | None = None


def get_config_store() -> ConfigStore:
    global _config_store
    if _config_store is None:
        from letterstyle.database import SessionLocal
        _config_store = ConfigStore(SessionLocal)
    return _config_store
