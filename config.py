import os
import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() == "true"


FORM_DATA_FILE = Path(os.environ.get("FORM_DATA_FILE", Path(__file__).parent / "claims.json"))
SCREENSHOT_DIR = Path(os.environ.get("SCREENSHOT_DIR", Path(__file__).parent / "screenshots"))

PORTAL_URL = os.environ.get("PORTAL_URL", "https://www.mhcasia.net/mhc/")
PORTAL_USERNAME = os.environ.get("PORTAL_USERNAME", "")
PORTAL_PASSWORD = os.environ.get("PORTAL_PASSWORD", "")

USE_AGENTCORE = _env_flag("USE_AGENTCORE")
AWS_REGION = os.environ.get("AWS_REGION", "ap-southeast-1")
BROWSER_ID = os.environ.get("BROWSER_ID", "your-bedrock-browser-id")
HEADLESS = _env_flag("HEADLESS", "true")

NAV_TIMEOUT_MS = _env_int("NAV_TIMEOUT_MS", 60000)
CLICK_TIMEOUT_MS = _env_int("CLICK_TIMEOUT_MS", 10000)
SWITCH_TIMEOUT_MS = _env_int("SWITCH_TIMEOUT_MS", 15000)
SEARCH_RESULT_TIMEOUT_MS = _env_int("SEARCH_RESULT_TIMEOUT_MS", 12000)
DIALOG_WAIT_MS = _env_int("DIALOG_WAIT_MS", 2000)
POLL_INTERVAL_MS = _env_int("POLL_INTERVAL_MS", 250)

LOGIN_ATTEMPTS = _env_int("LOGIN_ATTEMPTS", 3)
LOGIN_FRESHNESS_SECONDS = _env_int("LOGIN_FRESHNESS_SECONDS", 900)
MAX_LOGIN_ATTEMPTS_PER_RUN = _env_int("MAX_LOGIN_ATTEMPTS_PER_RUN", 10)

MIN_SEARCH_TERM_LENGTH = _env_int("MIN_SEARCH_TERM_LENGTH", 5)
CONSULTATION_FEE_MAX = _env_int("CONSULTATION_FEE_MAX", 99999)


def validate_config() -> None:
    if not PORTAL_USERNAME or not PORTAL_PASSWORD:
        raise ValueError("PORTAL_USERNAME / PORTAL_PASSWORD are not configured. Set them in the environment.")
    if not PORTAL_URL.startswith(("http://", "https://")):
        raise ValueError(f"PORTAL_URL is not a valid address: {PORTAL_URL!r}")
    if USE_AGENTCORE and "your-bedrock-browser-id" in BROWSER_ID:
        raise ValueError("BROWSER_ID is not configured. Set the BROWSER_ID environment variable.")
    if LOGIN_ATTEMPTS < 1 or MAX_LOGIN_ATTEMPTS_PER_RUN < LOGIN_ATTEMPTS:
        raise ValueError("MAX_LOGIN_ATTEMPTS_PER_RUN must be at least LOGIN_ATTEMPTS (and both positive)")
