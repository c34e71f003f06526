"""Operator action log: one sanitized line per lifecycle event."""

from datetime import datetime
import os
from pathlib import Path
import re
import traceback

LOG_ROTATE_MAX_BYTES = 5 * 1024 * 1024
LOG_ROTATE_BACKUP_COUNT = 5
TRACEBACK_LIMIT = 700

# key=value / key: value pairs whose value must never reach the log file.
_SECRET_RE = re.compile(r"(?i)\b(password|passwd|pwd|secret|token|api[_-]?key)(\s*[=:]\s*)(\S+)")


def sanitize_log_fragment(text):
    """Collapse whitespace to one line and mask credential-looking values."""
    flat = " ".join(str(text or "").split())
    return _SECRET_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}***", flat)


def get_operator_name(environ=None):
    """Resolve the invoking operator, preferring the account behind sudo."""
    env = os.environ if environ is None else environ
    for name in ("SUDO_USER", "USER", "LOGNAME"):
        value = (env.get(name) or "").strip()
        if value:
            return value
    return "xbdeploy"


def format_action_line(action, operator, command=None, rejection_message=None, now=None):
    """Render ``<ts> <operator> [xbdeploy/<action>] <command> rejected: <msg>``."""
    stamp = (now or datetime.now().astimezone()).strftime("%b %d %H:%M:%S")
    head = f"{stamp} <{sanitize_log_fragment(operator) or 'unknown'}> [xbdeploy/{sanitize_log_fragment(action) or 'unknown'}]"
    tail = [sanitize_log_fragment(command)]
    rejection = sanitize_log_fragment(rejection_message)
    if rejection:
        tail.append(f"rejected: {rejection}")
    return " ".join([head] + [part for part in tail if part])


def rotate_if_needed(path, max_bytes=LOG_ROTATE_MAX_BYTES, backup_count=LOG_ROTATE_BACKUP_COUNT):
    """Shift ``log``, ``log.1`` ... ``log.N-1`` up by one once ``log`` hits ``max_bytes``."""
    path = Path(path)
    if max_bytes <= 0 or backup_count <= 0:
        return False
    try:
        if path.stat().st_size < max_bytes:
            return False
    except OSError:
        return False
    generations = [path] + [path.with_name(f"{path.name}.{idx}") for idx in range(1, backup_count + 1)]
    for older, newer in reversed(list(zip(generations, generations[1:]))):
        if older.exists():
            os.replace(older, newer)
    return True


def append_log_line(log_file, line):
    """Append one line to ``log_file``, rotating first; returns False on I/O failure."""
    log_file = Path(log_file)
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        rotate_if_needed(log_file)
        with log_file.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
    except OSError:
        return False
    return True


def make_log_action(log_file, operator=None):
    """Build the ``log_action(action, command=None, rejection_message=None)`` closure."""

    def log_action(action, command=None, rejection_message=None):
        line = format_action_line(action, operator or get_operator_name(), command, rejection_message)
        # A full disk or read-only LOG_DIR must not abort a deploy or restore.
        append_log_line(log_file, line)

    return log_action


def summarize_exception(context, exc, limit=TRACEBACK_LIMIT):
    """Return ``context: Type: text | traceback: ...`` on a single line."""
    if exc is None:
        return f"{context}: Exception"
    summary = f"{context}: {type(exc).__name__}"
    text = sanitize_log_fragment(str(exc))
    if text:
        summary += f": {text}"
    frames = sanitize_log_fragment(" | ".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    if frames:
        summary += f" | traceback: {frames[:limit]}"
    return summary


def make_log_exception(log_action):
    """Build an exception logger that emits through ``log_action``."""

    def log_exception(context, exc):
        log_action("error", rejection_message=summarize_exception(context, exc))

    return log_exception
