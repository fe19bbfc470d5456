"""
core/logging_config.py -- Process-wide logging setup for hosts embedding gatekeeper.

Every gatekeeper module logs through a named logger under the "gatekeeper"
namespace (gatekeeper.auth, gatekeeper.auth.tokens, ...). The module itself
never configures handlers; the host calls configure_logging() once at startup.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: int | str = logging.INFO) -> logging.Logger:
    """Install the stream handler format and return the gatekeeper root logger."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT)
    logger = logging.getLogger("gatekeeper")
    logger.setLevel(level)
    return logger
