import logging

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(log_file: str, level: int = logging.INFO) -> logging.Logger:
    """
    Sends the package's log records to log_file. The TUI owns the terminal,
    so nothing is written to stderr.
    """
    logger = logging.getLogger("replpeek")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()
    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
