"""Run the API server: ``python -m zomp``."""
import logging

import uvicorn

from zomp.config import settings


def main() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("zomp.main:app", host=settings.HOST, port=settings.PORT, log_level="info")


if __name__ == "__main__":
    main()
