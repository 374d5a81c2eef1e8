from __future__ import annotations

import logging

import uvicorn
from dotenv import find_dotenv, load_dotenv

from .config import get_settings


def main() -> None:
    # Values already exported in the environment take precedence over .env.
    load_dotenv(find_dotenv(usecwd=True))
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = get_settings()
    uvicorn.run("hydrate_push.main:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
