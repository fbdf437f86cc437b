"""Constants shared across sanitizeflow components."""

from datetime import timedelta

UNMANAGED_FILE_TYPE = "unmanaged"
MIN_GRANT_TTL = timedelta(hours=24)
DEFAULT_SOURCE_CONTAINER = "original-store"
DEFAULT_REBUILD_CONTAINER = "rebuild-store"
DEFAULT_OUTCOME_QUEUE = "transaction-outcome"
DEFAULT_TRIGGER_TOPIC = "object-created"
DEFAULT_OUTPUT_PUT_HEADERS = {"x-ms-blob-type": "BlockBlob"}
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
