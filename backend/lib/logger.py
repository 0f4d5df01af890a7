"""
Logging Utility for the Teach-Me Backend

Console logging with:
- Color-coded log levels (only when stdout is a terminal)
- One icon per engine component, so grading, generation and persistence
  lines are easy to tell apart
- Section banners around each request
- Pretty printing for structured data
"""

import json
import logging
import sys
from datetime import datetime
from pprint import pformat
from typing import Any, Dict, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    SUBSECTION = '\033[96m' # Bright Cyan

    KEY = '\033[93m'        # Bright Yellow
    VALUE = '\033[92m'      # Bright Green
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}


def _is_tty() -> bool:
    return sys.stdout.isatty()


def mask_id(value: Optional[str], keep: int = 20) -> Optional[str]:
    """Shorten long IDs in log lines."""
    if value and len(value) > keep:
        return value[:keep] + "..."
    return value


class ColoredFormatter(logging.Formatter):
    """Formatter with colors and a per-component icon."""

    LEVEL_ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Keyed on the last segment of the logger name
    COMPONENT_ICONS = {
        'main': '🌐',
        'session_engine': '💾',
        'session_store': '🗄️',
        'answer_validator': '📊',
        'step_generator': '🎯',
        'completion_summary': '📝',
        'model_client': '🤖',
        'response_parser': '🧩',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and _is_tty()

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.ERROR:
            icon = self.LEVEL_ICONS[record.levelname]
        else:
            icon = self.COMPONENT_ICONS.get(record.name.split('.')[-1], self.LEVEL_ICONS.get(record.levelname, '•'))

        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        if self.use_colors:
            level_color = LEVEL_COLORS.get(record.levelname, Colors.RESET)
            reset, bold, ts_color = Colors.RESET, Colors.BOLD, Colors.TIMESTAMP
        else:
            level_color = reset = bold = ts_color = ''

        message = record.getMessage()
        stripped = message.strip()
        if stripped.startswith(('{', '[')):
            try:
                message = f"\n{pformat(json.loads(stripped), indent=2, width=100)}"
            except (json.JSONDecodeError, ValueError):
                pass

        formatted = (
            f"{ts_color}[{timestamp}]{reset} "
            f"{icon} {level_color}{record.levelname:8s}{reset} "
            f"{bold}{record.name}{reset} "
            f"| {message}"
        )

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


class StructuredLogger:
    """Logger with section banners and key/value pretty printing."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def _format_data(self, data: Any, indent: int = 2) -> str:
        color = _is_tty()
        key_c, val_c, reset = (Colors.KEY, Colors.VALUE, Colors.RESET) if color else ('', '', '')
        pad = ' ' * (indent - 2)

        if isinstance(data, dict):
            lines = []
            for key, value in data.items():
                if isinstance(value, (dict, list)):
                    rendered = self._format_data(value, indent + 2)
                else:
                    rendered = f"{val_c}{value}{reset}"
                lines.append(f"{' ' * indent}{key_c}{key}{reset}: {rendered}")
            return "{\n" + "\n".join(lines) + f"\n{pad}}}"

        if isinstance(data, list):
            shown = data[:3] if len(data) > 5 else data
            items = ",\n".join(' ' * indent + self._format_data(item, indent + 2) for item in shown)
            more = f"\n{pad}... ({len(data)} items total)" if len(data) > 5 else ""
            return f"[\n{items}{more}\n{pad}]"

        return str(data)

    def _banner(self, char: str, width: int, title: str, data: Optional[Dict[str, Any]], color: str):
        separator = char * width
        on, off = (color, Colors.RESET) if _is_tty() else ('', '')
        print(f"\n{on}{separator}{off}")
        print(f"{on}{title}{off}")
        if data:
            print(f"{on}{self._format_data(data)}{off}")
        print(f"{on}{separator}{off}\n")

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Print a section banner."""
        self._banner("=", 80, f"📋 {title.upper()}", data, Colors.SECTION)

    def subsection(self, title: str, data: Optional[Dict[str, Any]] = None):
        self._banner("-", 60, f"  → {title}", data, Colors.SUBSECTION)

    def _log(self, level: int, message: str, data: Optional[Dict[str, Any]] = None, **kwargs):
        if data:
            message = f"{message}\n{self._format_data(data)}"
        self.logger.log(level, message, **kwargs)

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.DEBUG, message, data)

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, message, data)

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.WARNING, message, data)

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        """Log an error, with traceback when an exception is given."""
        if error is not None:
            message = f"{message} Error: {type(error).__name__}: {error}"
        self._log(logging.ERROR, message, data, exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, f"✅ {message}", data)

    def request(self, method: str, path: str, user_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        """Log an incoming request."""
        request_data = {"user_id": mask_id(user_id)}
        if data:
            request_data.update(data)
        self._log(logging.INFO, f"📥 REQUEST: {method} {path}", request_data)

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        """Log an outgoing response."""
        response_data = {"duration_ms": f"{duration * 1000:.2f}" if duration is not None else None}
        if data:
            response_data.update(data)
        self._log(logging.INFO, f"📤 RESPONSE: {status} {path}", response_data)


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Route all loggers to a single colored console handler."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # HTTP client chatter from the openai and supabase SDKs
    for noisy in ('asyncio', 'httpx', 'httpcore', 'openai', 'hpack'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
