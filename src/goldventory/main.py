"""ASGI entrypoint for running the service."""
from __future__ import annotations

import uvicorn

from .config import get_settings
from .logging_setup import configure_logging


def run() -> None:
    """Convenience wrapper used by ``python -m goldventory.main``."""

    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(
        "goldventory.api:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_config=None,
    )


if __name__ == "__main__":
    run()
