# server/utils/logger.py

import  os
import  sys
import  logging

COLORS = {
    'DEBUG':    '\033[94m',  # Blue
    'INFO':     '\033[92m',  # Green
    'WARNING':  '\033[93m',  # Yellow
    'ERROR':    '\033[91m',  # Red
    'CRITICAL': '\033[95m',  # Magenta
    'RESET':    '\033[0m',   # Reset color
}

LOG_FORMAT      = "%(asctime)s | %(name)-15s | %(levelname)s | %(threadName)-18s  | %(message)s"
DATE_FORMAT     = "%H:%M:%S"


def colorize(levelname, text):
    color = COLORS.get(levelname, COLORS['RESET'])
    reset = COLORS['RESET']
    return f"{color}{text}{reset}"


class ColorFormatter(logging.Formatter):
    """Pads and colours the level name; the record itself is left untouched."""

    def __init__(self, use_color=True):
        super().__init__(LOG_FORMAT, DATE_FORMAT)
        self.use_color = use_color

    def format(self, record):
        original = record.levelname
        padded = f"{original:<7}"
        record.levelname = colorize(original, padded) if self.use_color else padded
        try:
            return super().format(record)
        finally:
            record.levelname = original


def getLogger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ColorFormatter(use_color=sys.stdout.isatty()))
        logger.addHandler(handler)
        logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    return logger
