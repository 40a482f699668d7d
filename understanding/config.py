"""
Understanding Layer Configuration
Settings for the context store, intent classifier, remote fallback and logging.

Values come from the environment (optionally a .env file at the project root)
with the defaults below.
"""

import os

from dotenv import load_dotenv

# ============================================
# PATHS
# ============================================

# 1. Identify where this file is: .../understanding/
CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))

# 2. One level up is the project root
ROOT_DIR = os.path.dirname(CURRENT_DIR)

# 3. Load .env from the root (missing file is fine)
load_dotenv(os.path.join(ROOT_DIR, ".env"))

# Per-user data directory for the context snapshot and the audit log
DATA_DIR = os.getenv(
    "UNDERSTANDING_DATA_DIR",
    os.path.join(os.path.expanduser("~"), ".understanding"),
)

CONTEXT_STORE_PATH = os.getenv(
    "CONTEXT_STORE_PATH", os.path.join(DATA_DIR, "context_store.json")
)
AUDIT_LOG_PATH = os.getenv("AUDIT_LOG_PATH", os.path.join(DATA_DIR, "audit_log.jsonl"))


# ============================================
# LOGGING
# ============================================

LOG_DIR = os.getenv("UNDERSTANDING_LOG_DIR", os.path.join(DATA_DIR, "logs"))
LOG_MAX_BYTES = 2 * 1024 * 1024   # 2 MB max per log file
LOG_BACKUP_COUNT = 3               # Keep 3 rotated backups
LOG_LEVEL = os.getenv("UNDERSTANDING_LOG_LEVEL", "INFO")


# ============================================
# CONTEXT STORE
# ============================================

CONTEXT_MAX_ENTRIES = 20       # In-memory turns kept
CONTEXT_PERSIST_ENTRIES = 10   # Turns written to the snapshot
CONTEXT_SUMMARY_REQUESTS = 3   # Raw inputs quoted in the context summary


# ============================================
# REMOTE CLASSIFIER
# ============================================

# "anthropic" or "openai"
CLASSIFIER_PROVIDER = os.getenv("CLASSIFIER_PROVIDER", "anthropic").lower()

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")

_DEFAULT_MODELS = {
    "anthropic": "claude-3-haiku-20240307",
    "openai": "gpt-3.5-turbo",
}
CLASSIFIER_MODEL = os.getenv(
    "CLASSIFIER_MODEL", _DEFAULT_MODELS.get(CLASSIFIER_PROVIDER, "claude-3-haiku-20240307")
)
CLASSIFIER_MAX_TOKENS = 250
CLASSIFIER_TEMPERATURE = 0.1
REMOTE_TIMEOUT_SECONDS = float(os.getenv("REMOTE_TIMEOUT_SECONDS", "10"))

# Circuit breaker around the remote classifier
REMOTE_FAILURE_THRESHOLD = 5
REMOTE_FAILURE_WINDOW_SECONDS = 60
REMOTE_RECOVERY_SECONDS = 120


# ============================================
# CONFIDENCE THRESHOLDS
# ============================================

FAST_PATH_THRESHOLD = 0.8   # Local result returned without a remote call
EXECUTE_THRESHOLD = 0.7     # planned_action "execute"
CLARIFY_THRESHOLD = 0.5     # Below this the planner asks a question
MAX_CONFIDENCE = 0.95


# ============================================
# CONFIRMATION GATE
# ============================================

CONFIRMATION_WINDOW_SECONDS = 5 * 60


# ============================================
# HELPER FUNCTIONS
# ============================================

def default_credential_provider():
    """
    Return a zero-argument callable yielding the API key for the configured
    provider. The classifier only consumes the key; rotation is not its job.
    """
    if CLASSIFIER_PROVIDER == "openai":
        return lambda: OPENAI_API_KEY
    return lambda: ANTHROPIC_API_KEY


def validate_config():
    """
    Validate configuration is properly set up.

    Returns list of error strings. Empty list = all good.
    """
    errors = []

    if CLASSIFIER_PROVIDER not in _DEFAULT_MODELS:
        errors.append(
            f"CLASSIFIER_PROVIDER '{CLASSIFIER_PROVIDER}' is not one of "
            f"{sorted(_DEFAULT_MODELS)}"
        )

    if REMOTE_TIMEOUT_SECONDS <= 0:
        errors.append("REMOTE_TIMEOUT_SECONDS must be positive")

    if not default_credential_provider()():
        errors.append(
            "No API key for the remote classifier - local heuristics only (non-critical)"
        )

    data_dir = os.path.dirname(CONTEXT_STORE_PATH)
    if data_dir and not os.path.exists(data_dir):
        try:
            os.makedirs(data_dir, exist_ok=True)
        except OSError as e:
            errors.append(f"Cannot create data directory {data_dir}: {e}")

    return errors
