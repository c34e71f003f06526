"""KEY=VALUE settings file reader with typed getters and env overrides."""

import os
from pathlib import Path

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def parse_env_lines(lines):
    """Parse shell-style ``[export] KEY=VALUE`` lines into a dict.

    Blank lines, comments, and lines without ``=`` are ignored; one pair of
    matching surrounding quotes is stripped from the value.
    """
    values = {}
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        if key.startswith("export "):
            key = key[len("export "):].strip()
        if not key:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        values[key] = value
    return values


class EnvConfig:
    """Settings from a file, where same-named environment variables take precedence."""

    def __init__(self, config_path, base_dir, environ=None):
        self.config_path = Path(config_path)
        self.base_dir = Path(base_dir)
        self.environ = os.environ if environ is None else environ
        try:
            self.values = parse_env_lines(self.config_path.read_text(encoding="utf-8").splitlines())
        except OSError:
            # The file is optional; every key has a built-in default.
            self.values = {}

    def _raw(self, name):
        """Return the stripped setting, or None when unset or blank."""
        for source in (self.environ, self.values):
            value = source.get(name)
            if value is not None and str(value).strip():
                return str(value).strip()
        return None

    def _number(self, name, default, convert, minimum):
        raw = self._raw(name)
        if raw is None:
            return default
        try:
            parsed = convert(raw)
        except ValueError:
            return default
        return max(parsed, minimum) if minimum is not None else parsed

    def get_str(self, name, default):
        raw = self._raw(name)
        return default if raw is None else raw

    def get_int(self, name, default, minimum=None):
        """Integer setting; unparsable values fall back, low values clamp to ``minimum``."""
        return self._number(name, default, int, minimum)

    def get_float(self, name, default, minimum=None):
        return self._number(name, default, float, minimum)

    def get_bool(self, name, default):
        """Boolean flag (1/true/yes/on, 0/false/no/off); anything else is ``default``."""
        raw = self._raw(name)
        if raw is None:
            return default
        lowered = raw.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        return default

    def get_list(self, name, default):
        """Comma-separated list with blank items dropped."""
        raw = self._raw(name)
        items = [item.strip() for item in raw.split(",") if item.strip()] if raw else []
        return items or list(default)

    def get_path(self, name, default):
        """Path setting; relative values resolve against ``base_dir``."""
        raw = self._raw(name)
        if raw is None:
            return Path(default)
        candidate = Path(raw)
        return candidate if candidate.is_absolute() else self.base_dir / candidate
