"""Runtime configuration read from the environment (and an optional ``.env``)."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from exam_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT

DEFAULT_AI_MODEL = "gpt-4.1-mini"
STORAGE_BACKENDS = ("memory", "firestore")


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v not in (None, "") else default


@dataclass(frozen=True)
class AppConfig:
    HOST: str = DEFAULT_HOST
    PORT: int = DEFAULT_PORT
    LOG_LEVEL: str = "INFO"
    STORAGE: str = "memory"  # memory | firestore
    FIREBASE_CREDENTIALS: str | None = None
    OPENAI_API_KEY: str | None = None
    AI_MODEL: str = DEFAULT_AI_MODEL

    @staticmethod
    def load(env_file: str | None = None) -> "AppConfig":
        load_dotenv(env_file)
        storage = (_env("EXAM_APP_STORAGE", "memory") or "memory").lower()
        if storage not in STORAGE_BACKENDS:
            raise ValueError(f"EXAM_APP_STORAGE must be one of {', '.join(STORAGE_BACKENDS)}, got {storage!r}")
        return AppConfig(
            HOST=_env("EXAM_APP_HOST", DEFAULT_HOST) or DEFAULT_HOST,
            PORT=int(_env("EXAM_APP_PORT", str(DEFAULT_PORT)) or DEFAULT_PORT),
            LOG_LEVEL=(_env("EXAM_APP_LOG_LEVEL", "INFO") or "INFO").upper(),
            STORAGE=storage,
            FIREBASE_CREDENTIALS=_env("FIREBASE_CREDENTIALS") or _env("GOOGLE_APPLICATION_CREDENTIALS"),
            OPENAI_API_KEY=_env("OPENAI_API_KEY"),
            AI_MODEL=_env("EXAM_APP_AI_MODEL", DEFAULT_AI_MODEL) or DEFAULT_AI_MODEL,
        )
