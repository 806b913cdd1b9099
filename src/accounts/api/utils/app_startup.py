import logging
import sys
from pathlib import Path

from loguru import logger

from src.accounts.runtime.context import get_config

PLAIN_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "[<cyan>{extra[request_id]}</cyan>] | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """Forward stdlib ``logging`` records (uvicorn, sqlalchemy) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        # Request logging middleware already covers access lines
        if record.name == "uvicorn.access":
            return

        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        logger.opt(depth=2, exception=record.exc_info).bind(
            logger_name=record.name
        ).log(level, record.getMessage())


def configure_logging(console: bool = True) -> None:
    """Install loguru sinks from the ``logging`` config section.

    Args:
        console: Add the colorized stderr sink. The CLI passes False when it
            prints its own rich output and only wants the file sink.
    """
    main_config = get_config()
    cfg = main_config.logging
    env = main_config.app.environment
    verbose_tracebacks = env != "production"

    logger.remove()
    logger.configure(extra={"request_id": "-"})

    if console:
        logger.add(
            sys.stderr,
            level=cfg.level,
            format=PLAIN_FORMAT,
            colorize=True,
            backtrace=verbose_tracebacks,
            diagnose=verbose_tracebacks,
        )

    if cfg.file:
        path = Path(cfg.file)
        path.parent.mkdir(parents=True, exist_ok=True)
        is_json = cfg.format == "json"
        logger.add(
            str(path),
            level=cfg.level,
            format="{message}" if is_json else PLAIN_FORMAT,
            serialize=is_json,
            rotation=f"{cfg.max_size_mb} MB",
            retention=cfg.backup_count,
            compression="zip",
            enqueue=True,
            backtrace=verbose_tracebacks,
            diagnose=verbose_tracebacks,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in list(logging.root.manager.loggerDict.keys()):
        stdlog = logging.getLogger(name)
        stdlog.handlers = []
        stdlog.propagate = True

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.CRITICAL)

    logger.info(
        "Logging configured",
        app_level=cfg.level,
        app_format=cfg.format,
        app_file=cfg.file,
        environment=env,
    )
