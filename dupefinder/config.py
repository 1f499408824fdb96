"""Runtime configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "postgresql://user:pass@db:5432/dupes"
JOB_DISPATCH_MODES = {"celery", "inline", "disabled"}


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    perplexity_api_key: str | None = None
    perplexity_model: str = "sonar-pro"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    upcitemdb_endpoint: str = "https://api.upcitemdb.com/prod/trial"
    upcitemdb_api_key: str | None = None
    getimg_api_key: str | None = None
    hf_api_key: str | None = None
    storage_bucket: str = "productimages"
    storage_endpoint: str | None = None
    storage_public_url: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    http_timeout: float = 30.0
    llm_timeout: float = 120.0
    job_timeout: float = 300.0
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    fanout_limit: int = 8
    max_dupes: int = 5
    job_dispatch: str = "celery"
    redis_url: str = "redis://redis:6379/0"
    reconcile_name_fallback: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        dispatch = os.environ.get("JOB_DISPATCH", "celery").lower()
        if dispatch not in JOB_DISPATCH_MODES:
            raise ValueError(f"JOB_DISPATCH must be one of {sorted(JOB_DISPATCH_MODES)}, got {dispatch!r}")
        return cls(
            database_url=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            perplexity_api_key=os.environ.get("PERPLEXITY_API_KEY"),
            perplexity_model=os.environ.get("PERPLEXITY_MODEL", "sonar-pro"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            openai_model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
            upcitemdb_endpoint=os.environ.get("UPCITEMDB_ENDPOINT", "https://api.upcitemdb.com/prod/trial"),
            upcitemdb_api_key=os.environ.get("UPCITEMDB_API_KEY"),
            getimg_api_key=os.environ.get("GETIMG_API_KEY") or None,
            hf_api_key=os.environ.get("HF_API_KEY") or None,
            storage_bucket=os.environ.get("STORAGE_BUCKET", "productimages"),
            storage_endpoint=os.environ.get("STORAGE_ENDPOINT"),
            storage_public_url=os.environ.get("STORAGE_PUBLIC_URL"),
            aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY"),
            http_timeout=float(os.environ.get("HTTP_TIMEOUT", 30.0)),
            llm_timeout=float(os.environ.get("LLM_TIMEOUT", 120.0)),
            job_timeout=float(os.environ.get("JOB_TIMEOUT", 300.0)),
            retry_attempts=int(os.environ.get("RETRY_ATTEMPTS", 3)),
            retry_base_delay=float(os.environ.get("RETRY_BASE_DELAY", 1.0)),
            fanout_limit=int(os.environ.get("FANOUT_LIMIT", 8)),
            max_dupes=int(os.environ.get("MAX_DUPES", 5)),
            job_dispatch=dispatch,
            redis_url=os.environ.get("REDIS_URL", "redis://redis:6379/0"),
            reconcile_name_fallback=_env_bool("RECONCILE_NAME_FALLBACK"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
