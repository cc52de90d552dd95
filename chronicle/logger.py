import logging
import os
import sys
from dotenv import load_dotenv


load_dotenv()  # CHRONICLE_LOG_LEVEL may live in a .env next to the campaign files

# GitHub Actions understands ::warning:: style annotations
GITHUB_ACTIONS = os.getenv("GITHUB_ACTIONS") == "true"

# Colour only when the log stream is a terminal
USE_COLOR = sys.stderr.isatty() and "NO_COLOR" not in os.environ

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

LOG_LEVEL = os.getenv("CHRONICLE_LOG_LEVEL", os.getenv("LOG_LEVEL", "INFO")).upper()
if LOG_LEVEL not in VALID_LOG_LEVELS:
    LOG_LEVEL = "INFO"


class ANSIColors:
    """Terminal colors per level."""

    DEBUG = "\033[36m"    # Cyan
    INFO = "\033[32m"     # Green
    WARNING = "\033[33m"  # Yellow
    ERROR = "\033[31m"    # Red
    CRITICAL = "\033[1;31m"  # Bold Red
    RESET = "\033[0m"

    BY_LEVEL = {
        logging.DEBUG: DEBUG,
        logging.INFO: INFO,
        logging.WARNING: WARNING,
        logging.ERROR: ERROR,
        logging.CRITICAL: CRITICAL,
    }


class CustomFormatter(logging.Formatter):
    """Colors records on a terminal, annotates them on CI, leaves them plain otherwise."""

    CI_PREFIXES = {
        logging.DEBUG: "::debug::",
        logging.WARNING: "::warning::",
    }

    def format(self, record):
        log_message = super().format(record)

        if GITHUB_ACTIONS:
            if record.levelno >= logging.ERROR:
                return f"::error::{log_message}"
            return self.CI_PREFIXES.get(record.levelno, "") + log_message

        if not USE_COLOR:
            return log_message

        log_color = ANSIColors.BY_LEVEL.get(record.levelno, ANSIColors.RESET)
        return f"{log_color}{log_message}{ANSIColors.RESET}"


# stdout carries report output only
console_handler = logging.StreamHandler(sys.stderr)
console_handler.setFormatter(CustomFormatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s"))

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    handlers=[console_handler],
)


def get_logger(name: str) -> logging.Logger:
    """Logger named after the last component of a dotted module name."""
    return logging.getLogger(name.split(".")[-1])


def set_verbose(verbose: bool) -> None:
    """Switch the root logger to DEBUG for --verbose runs."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
