import logging

RESET = "\033[0m"
DIM = "\033[2m"
BOLD = "\033[1m"
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
MAGENTA = "\033[35m"

LEVEL_COLORS = {
    logging.DEBUG: DIM,
    logging.INFO: GREEN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
    logging.CRITICAL: RED + BOLD,
}

# (marker in message, style) checked in order
MESSAGE_STYLES = (
    ("State:", BOLD + CYAN),
    ("Barge-in", BOLD + YELLOW),
    ("Utterance:", BOLD + GREEN),
    ("Reply:", GREEN),
    ("Transcript:", CYAN),
    ("Session started", BOLD + MAGENTA),
    ("Session ended", BOLD + MAGENTA),
)


def style_message(record: logging.LogRecord, message: str) -> str:
    for marker, style in MESSAGE_STYLES:
        if marker in message:
            return f"{style}{message}{RESET}"
    if record.levelno == logging.DEBUG:
        return f"{DIM}{message}{RESET}"
    if record.levelno >= logging.WARNING:
        return f"{LEVEL_COLORS.get(record.levelno, '')}{message}{RESET}"
    return message


class ColoredFormatter(logging.Formatter):
    """Console formatter that highlights turn-taking milestones."""

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno, "")
        time = self.formatTime(record, self.datefmt)
        name = record.name.split(".")[-1]
        msg = style_message(record, record.getMessage())
        line = f"{DIM}{time}{RESET} {color}{record.levelname:<5}{RESET} {DIM}{name:<16}{RESET} {msg}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line
