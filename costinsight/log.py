import logging

LOG_FORMAT = "[costinsight] %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
