from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_env_file(repo_root: Path) -> None:
    env_path = repo_root / "config" / ".env"
    if env_path.exists():
        # 実行環境で設定済みの環境変数を優先する
        load_dotenv(dotenv_path=env_path, override=False)


class Settings(BaseSettings):
    store_backend: Literal["inmemory", "dynamodb"] = "inmemory"
    admin_api_key: str = ""
    # カンマ区切り
    cors_allow_origins: str = "*"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(frozen=True)

    @field_validator("store_backend", mode="before")
    @classmethod
    def _normalize_backend(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("admin_api_key", mode="before")
    @classmethod
    def _strip_key(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().upper() or "INFO"
        return v

    @property
    def cors_origins(self) -> list[str]:
        origins = [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]
        return origins or ["*"]

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
