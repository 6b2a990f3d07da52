"""Executable entrypoint for the WhatsApp gateway service."""

from __future__ import annotations

import logging
from logging import StreamHandler

import uvicorn
from dotenv import load_dotenv


def _init_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    fmt = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
    logging.basicConfig(level=level, format=fmt)

    # Ensure uvicorn access logs are enabled and formatted
    for logger_name in ("uvicorn", "uvicorn.access"):
        lg = logging.getLogger(logger_name)
        lg.setLevel(level)
        if not lg.handlers:
            handler = StreamHandler()
            handler.setFormatter(logging.Formatter(fmt))
            lg.addHandler(handler)


def main() -> None:
    load_dotenv()

    from config import gateway_config

    cfg = gateway_config()
    _init_logging(cfg.log_level)
    # One worker only: each worker process would open its own WhatsApp session.
    uvicorn.run(
        "wagateway.api:create_app",
        host=cfg.host,
        port=cfg.port,
        factory=True,
        workers=1,
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
