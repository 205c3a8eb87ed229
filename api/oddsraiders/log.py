# api/oddsraiders/log.py
import logging


def setup_logging(level=logging.INFO):
    # configure the root logger so every "oddsraiders.*" logger inherits it
    logger = logging.getLogger()
    logger.setLevel(level)

    # avoid duplicate handlers when uvicorn reloads / worker restarts
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(
        "%(levelname)-8s | %(asctime)s | %(name)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger
