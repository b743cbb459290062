"""Run the server: python -m hlsstreamer"""
from __future__ import annotations

import uvicorn

from .main import app, settings


def main() -> None:
    uvicorn.run(
        app,
        host=settings.http.host,
        port=settings.http.port,
        log_config=None
    )


if __name__ == "__main__":
    main()
