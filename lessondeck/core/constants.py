"""Application-wide constants."""

# ---------------------------------------------------------------------------
# Gamma API
# ---------------------------------------------------------------------------
GAMMA_API_BASE_DEFAULT = "https://public-api.gamma.app/v0.2"
GAMMA_API_KEY_HEADER = "X-API-KEY"
GENERATIONS_PATH = "/generations"

DECK_FORMATS = ("presentation", "webpage")
EXPORT_FORMATS = ("pdf", "pptx")

DEFAULT_DECK_FORMAT = "presentation"
DEFAULT_THEME_NAME = "Oasis"
DEFAULT_TEXT_MODE = "preserve"
DEFAULT_CARD_SPLIT = "inputTextBreaks"
DEFAULT_IMAGE_SOURCE = "noImages"

# Every terminal-success marker seen across API revisions is accepted.
SUCCESS_STATUSES = frozenset({"completed", "succeeded", "complete"})
FAILURE_STATUSES = frozenset({"failed"})

# ---------------------------------------------------------------------------
# Polling / backoff
# ---------------------------------------------------------------------------
POLL_MAX_ATTEMPTS_DEFAULT = 60
POLL_INTERVAL_SECONDS_DEFAULT = 5.0
BACKOFF_BASE_SECONDS_DEFAULT = 2.0
BACKOFF_CAP_SECONDS_DEFAULT = 60.0
BACKOFF_JITTER_SECONDS_DEFAULT = 0.5
SUBMIT_MAX_ATTEMPTS_DEFAULT = 3
REQUEST_TIMEOUT_SECONDS_DEFAULT = 30.0

# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------
HOST_PLACEHOLDER = "{{HOST}}"
STATUS_SNAPSHOT_FILENAME = "status.json"
INDEX_FILENAME = "index.html"
LESSON_PAGES_DIRNAME = "lessons"
DOWNLOADS_DIRNAME = "downloads"
SITE_TITLE = "Lesson Decks"
