from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # --- Local SQLite ---
    sqlite_db_path: Path = Path("/opt/letterstyle/data/letterstyle.db")

    # --- Learning pipeline ---
    min_edits_for_analysis: int = 5
    analysis_interval: int = 10
    max_edits_per_analysis: int = 50
    max_seed_letters_per_analysis: int = 10
    analysis_workers: int = 2

    # --- Profiles ---
    min_confidence_threshold: float = 0.5
    max_phrases_per_section: int = 20
    profile_cache_ttl_seconds: int = 300

    # --- De-identified analytics ---
    min_clinicians_for_aggregation: int = 5
    min_edits_for_aggregation: int = 10
    min_pattern_frequency: int = 2
    max_patterns_per_category: int = 50
    subspecialties: list[str] = [
        "GENERAL_CARDIOLOGY",
        "INTERVENTIONAL",
        "STRUCTURAL",
        "ELECTROPHYSIOLOGY",
        "IMAGING",
        "HEART_FAILURE",
        "CARDIAC_SURGERY",
    ]

    # --- Web interface ---
    web_host: str = "0.0.0.0"
    web_port: int = 8080

    @property
    def sqlite_url(self) -> str:
        return f"sqlite:///{self.sqlite_db_path}"


settings = Settings()
