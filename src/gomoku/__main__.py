"""Entry point for running the Gomoku server via ``python -m gomoku``."""

from __future__ import annotations

import uvicorn

from .config import configure_logging, load_settings


def main() -> None:
    """Start the FastAPI-powered Gomoku websocket server."""

    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "gomoku.web:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
