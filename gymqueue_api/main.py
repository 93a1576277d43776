"""Server entry point: ``gymqueue-api`` or ``uvicorn gymqueue_api.main:app``."""

import uvicorn

from gymqueue_api.app import create_app
from gymqueue_api.core.config import get_settings

app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "gymqueue_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_config=None,
    )


if __name__ == "__main__":
    run()
