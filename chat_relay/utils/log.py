import logging
from typing import Optional


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def mask_secret(value: Optional[str]) -> str:
    """Render a session key or access key safe for logs: first 4 characters only."""
    if not value:
        return "<none>"
    return f"{value[:4]}***"
