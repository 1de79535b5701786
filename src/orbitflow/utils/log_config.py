import logging
import os
import sys


def setup_logging(level=None, format_string='%(asctime)s - %(name)s - %(levelname)s - %(message)s'):
    """Configure logging to stdout for the orbitflow loggers.

    The level defaults to ``ORBITFLOW_LOG_LEVEL`` from the environment, or
    INFO when unset.
    """
    if level is None:
        level = os.environ.get("ORBITFLOW_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format=format_string,
        stream=sys.stdout
    )

# Setup logging when this module is imported
setup_logging()

# Shared by every orbitflow module: from orbitflow.utils.log_config import logger
logger = logging.getLogger("orbitflow")
