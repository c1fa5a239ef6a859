import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Institutional Path Management: Locate .env in the project root
env_path = Path(__file__).resolve().parent.parent / '.env'
load_dotenv(dotenv_path=env_path)

TRACKINGMORE_BASE_URL = os.getenv("TRACKINGMORE_BASE_URL", "https://api.trackingmore.com/v4")
# Realtime endpoint can be slow
TRACKINGMORE_TIMEOUT_SECONDS = float(os.getenv("TRACKINGMORE_TIMEOUT_SECONDS", "30"))
TRACKINGMORE_DELETE_TIMEOUT_SECONDS = 15.0

AI_MODEL = os.getenv("LOOKOUT_AI_MODEL", "gpt-4o-mini")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_cron_secret() -> str | None:
    return os.getenv("CRON_SECRET") or None


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process or the runner script."""
    level_name = (level or os.getenv("LOOKOUT_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
