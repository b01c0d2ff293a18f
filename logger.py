# logger.py - Rotating file logs for the matrix engine and the HTTP routes
import os
import logging
from logging.handlers import RotatingFileHandler

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s [in %(pathname)s:%(lineno)d]"
CONSOLE_FORMAT = "%(name)s - %(levelname)s - %(message)s"

# Logger trees that get their own file; children (matrix.outbox, blueprints.auth...) propagate up
LOG_TREES = ("matrix", "blueprints")


def setup_logger(name, log_file=None, level=logging.INFO, log_dir="logs",
                 max_bytes=1024 * 1024, backup_count=10):
    """Attach a size-rotated file handler (and a console one outside production) to `name`"""
    os.makedirs(log_dir, exist_ok=True)
    log_file = log_file or os.path.join(log_dir, f"{name}.log")

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # create_app may run more than once per process (tests, CLI scripts)
    if any(getattr(h, "_matrix_handler", False) for h in logger.handlers):
        return logger

    file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    file_handler.setLevel(level)
    file_handler._matrix_handler = True
    logger.addHandler(file_handler)

    if os.environ.get("FLASK_ENV") != "production":
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        console_handler._matrix_handler = True
        logger.addHandler(console_handler)

    return logger


def setup_logging(app):
    level_name = app.config.get("LOG_LEVEL") or ("DEBUG" if app.debug else "INFO")
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    loggers = [
        setup_logger(
            tree,
            level=level,
            log_dir=app.config.get("LOG_DIR", "logs"),
            max_bytes=app.config.get("LOG_MAX_BYTES", 1024 * 1024),
            backup_count=app.config.get("LOG_BACKUP_COUNT", 10),
        )
        for tree in LOG_TREES
    ]
    app.logger.setLevel(level)
    return loggers
