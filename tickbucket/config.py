import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
	return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_optional_float(name: str):
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return None
	return float(raw)


DEFAULT_CAPACITY = int(os.getenv("TICKBUCKET_CAPACITY", "10"))
DEFAULT_FILL_PER_WINDOW = float(os.getenv("TICKBUCKET_FILL_PER_WINDOW", "1"))
DEFAULT_WINDOW_MS = int(os.getenv("TICKBUCKET_WINDOW_MS", "1000"))
DEFAULT_VERBOSE = _env_flag("TICKBUCKET_VERBOSE")

STATUS_LOG_INTERVAL_SECONDS = float(os.getenv("TICKBUCKET_STATUS_LOG_INTERVAL_SECONDS", "10"))
LOG_LEVEL = os.getenv("TICKBUCKET_LOG_LEVEL", "INFO")

REQUEST_TIMEOUT_SECONDS = int(os.getenv("TICKBUCKET_REQUEST_TIMEOUT_SECONDS", "30"))
MAX_RETRIES = int(os.getenv("TICKBUCKET_MAX_RETRIES", "3"))
BACKOFF_INITIAL_SECONDS = float(os.getenv("TICKBUCKET_BACKOFF_INITIAL_SECONDS", "0.5"))
BACKOFF_MAX_SECONDS = float(os.getenv("TICKBUCKET_BACKOFF_MAX_SECONDS", "5"))
USER_AGENT = os.getenv("TICKBUCKET_USER_AGENT", "tickbucket/0.1 (+local)")

# None means block until tokens arrive
ACQUIRE_TIMEOUT_SECONDS = _env_optional_float("TICKBUCKET_ACQUIRE_TIMEOUT_SECONDS")
DEFAULT_RETRY_AFTER_SECONDS = float(os.getenv("TICKBUCKET_DEFAULT_RETRY_AFTER_SECONDS", "1"))
