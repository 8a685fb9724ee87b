"""
Web server bootstrap for wiptrack.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env so the session secret is available when the server is started
# directly (e.g. uvicorn wiptrack.web.server:create_server_app --factory).
load_dotenv()
load_dotenv(Path.cwd() / ".env")

import uvicorn
from loguru import logger

from ..config import WiptrackConfig, ensure_wiptrack_dir
from .api import create_app


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8787


class InterceptHandler(logging.Handler):
    """Intercept standard logging messages toward Loguru sinks."""
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(log_file: Path | None = None) -> None:
    """Configure loguru to intercept uvicorn/fastapi logs and write to file/console."""
    if log_file is None:
        log_file = ensure_wiptrack_dir() / "server.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Remove default loguru handler
    logger.remove()

    logger.add(sys.stderr, level="INFO", colorize=True, format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>")

    logger.add(str(log_file), level="DEBUG", rotation="10 MB", retention="1 week", format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi"):
        logging_logger = logging.getLogger(logger_name)
        logging_logger.handlers = [InterceptHandler()]
        logging_logger.propagate = False


def create_server_app() -> object:
    setup_logging()
    config = WiptrackConfig.load()
    if not config.session.secret:
        logger.warning("server.config WIPTRACK_SESSION_SECRET is not set; every /api request will be rejected")
    logger.info(
        "Starting wiptrack API server (db={}, cache={})",
        config.db_path,
        config.cache.backend,
    )
    return create_app(config)


def run_server(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
    uvicorn.run("wiptrack.web.server:create_server_app", host=host, port=port, log_level="info", factory=True)
