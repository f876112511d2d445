"""Run the LeadHub API server: ``python -m leadhub``."""

import uvicorn

from leadhub.config import settings


def main() -> None:
    uvicorn.run(
        "leadhub.api.routes:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
