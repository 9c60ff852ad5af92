from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "fmdashboard"
    log_level: str = "INFO"

    # Base directory holding one collection file per entity kind plus the settings file.
    data_dir: str = "./.fm-dashboard"
    site_settings_filename: str = "siteSettings.json"
    # Echo collection SQL for local debugging.
    store_echo: bool = False
    # Seconds between background VACUUM passes over every collection (0 disables).
    compaction_interval_s: int = 300
    # Group seeded by the one-time setup step.
    default_group_id: str = "default"

    def collection_path(self, name: str) -> Path:
        return Path(self.data_dir) / f"{name}.db"

    def site_settings_path(self) -> Path:
        return Path(self.data_dir) / self.site_settings_filename


@lru_cache
def get_settings() -> Settings:
    return Settings()
