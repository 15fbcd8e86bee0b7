"""
Run the relay with uvicorn.

Usage:
    python -m genai_relay
"""

import uvicorn

from genai_relay.application.app import create_app
from genai_relay.core.config.settings import get_settings


def main() -> None:
    settings = get_settings()

    uvicorn.run(
        create_app(settings),
        host=settings.app.API_HOST,
        port=settings.app.API_PORT,
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
