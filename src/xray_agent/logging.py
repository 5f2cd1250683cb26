import logging

# Libraries that log every request/frame at INFO; only useful when debugging.
CHATTY_LOGGERS = ("httpx", "httpcore", "urllib3", "websockets", "uvicorn.access")


def configure_logging(level: str = "INFO") -> None:
    """
    Configure logging for the X-Ray agent.

    Args:
        level: Level name for the agent's own loggers ("DEBUG", "INFO", ...).
            Unknown names fall back to INFO.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # A frame stream means one detector call and one websocket message per
    # frame; keep those out of the log unless we're debugging.
    quiet_level = numeric_level if numeric_level <= logging.DEBUG else logging.WARNING
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
