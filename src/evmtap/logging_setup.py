from pathlib import Path
from datetime import datetime
import logging

from rich.logging import RichHandler

# Global variable to track if logging has been set up
_is_logging_configured = False

def setup_logging(level: str = "INFO", log_dir: str | Path = "logs") -> logging.Logger:
    """Configure logging for all modules"""
    global _is_logging_configured

    if _is_logging_configured:
        return logging.getLogger("evmtap")

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"evmtap_{timestamp}.log"

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    console_handler = RichHandler(rich_tracebacks=True, show_path=False, log_time_format="[%X]")
    console_handler.setLevel(logging.getLevelName(level.upper()))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers = []
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Set higher log level for noisy third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.INFO)

    _is_logging_configured = True
    return logging.getLogger("evmtap")
