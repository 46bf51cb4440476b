import os
from dotenv import load_dotenv
from pathlib import Path
from typing import Optional
from openai import OpenAI

# Go up one level from pensive/ to root/
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# LLM (any OpenAI-compatible endpoint; xAI works with LLM_BASE_URL=https://api.x.ai/v1)
LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("XAI_API_KEY") or os.getenv("OPENAI_API_KEY") or ""
LLM_BASE_URL = os.getenv("LLM_BASE_URL") or None
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")

# Scheduled endpoints
CRON_SECRET = os.getenv("CRON_SECRET", "")

# Cache backend: memory | redis
CACHE_BACKEND = os.getenv("CACHE_BACKEND", "memory").lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/")
DB_URL = os.getenv("DB_URL", "sqlite:///pensive.db")

# Scheduler
TIMEZONE = os.getenv("TIMEZONE", "America/New_York")
SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED", "true")
DIGEST_SEND_DAY = os.getenv("DIGEST_SEND_DAY", "mon")
DIGEST_SEND_HOUR = int(os.getenv("DIGEST_SEND_HOUR", "4"))

# Work queue
JOB_LEASE_SECONDS = int(os.getenv("JOB_LEASE_SECONDS", "300"))
JOB_RETRY_DELAY_SECONDS = int(os.getenv("JOB_RETRY_DELAY_SECONDS", "60"))
JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))

# Feeds
MAX_FEED_ERRORS = int(os.getenv("MAX_FEED_ERRORS", "5"))

# Email
EMAIL_FROM = os.getenv("EMAIL_FROM", "digest@pensive.local")
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
# console | smtp
SEND_MODE = os.getenv("SEND_MODE", "smtp" if SMTP_HOST else "console").lower()
EMAIL_TIMEOUT = float(os.getenv("EMAIL_TIMEOUT", "15"))


def make_llm_client(api_key: Optional[str] = None, base_url: Optional[str] = None) -> Optional[OpenAI]:
    """Reusable OpenAI client, or None when no key is configured (demo mode)."""
    key = api_key if api_key is not None else LLM_API_KEY
    if not key:
        return None
    return OpenAI(api_key=key, base_url=base_url or LLM_BASE_URL)
