"""Service configuration from environment variables."""

import os

QUICKWIT_URL: str = os.getenv("QUICKWIT_URL", "http://quickwit:7280/api/v1")
QW_INDEX: str = os.getenv("QW_INDEX", "")
QW_TIME_FIELD: str = os.getenv("QW_TIME_FIELD", "")
QW_TIME_OUTPUT_FORMAT: str = os.getenv("QW_TIME_OUTPUT_FORMAT", "")
QW_LOG_MESSAGE_FIELD: str = os.getenv("QW_LOG_MESSAGE_FIELD", "")
QW_LOG_LEVEL_FIELD: str = os.getenv("QW_LOG_LEVEL_FIELD", "")
MAX_CONCURRENT_SHARD_REQUESTS: str = os.getenv("MAX_CONCURRENT_SHARD_REQUESTS", "5")
GEOHASH_DEFAULT_PRECISION: int = int(os.getenv("GEOHASH_DEFAULT_PRECISION", "3"))
HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "30"))
