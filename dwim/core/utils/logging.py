import logging
import os

def configure(level=None):
    level = (level or os.getenv("DWIM_LOG_LEVEL") or "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(levelname)s %(name)s - %(message)s"
    )
