"""ASGI entrypoint for running the service."""
from __future__ import annotations

import uvicorn

from .config import get_settings


def run() -> None:
    """Convenience wrapper used by ``python -m ledger_service``."""

    settings = get_settings()
    uvicorn.run(
        "ledger_service.api:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_config=None,
    )


if __name__ == "__main__":
    run()
