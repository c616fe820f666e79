"""
Routelet Environment Access
===========================

Typed access to environment variables, with optional ``.env`` loading.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union


_VARIABLE = re.compile(r"\$\{([^}]+)\}|\$(\w+)")


class Env:
    """
    Environment variable reader.

    Reads from ``os.environ`` by default, or from any mapping passed as
    *environ* (handy in tests).

    Example:
        env = Env()
        env.load(".env")

        host = env.str("LISTEN_HOST", default="0.0.0.0")
        port = env.int("PORT", default=8000)
        debug = env.bool("DEBUG", default=False)
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ if environ is not None else os.environ
        self._export = environ is None
        self._cache: Dict[str, str] = {}

    def load(
        self,
        env_file: Union[str, Path] = ".env",
        override: bool = False,
    ) -> "Env":
        """
        Load variables from a ``.env`` file.

        Missing files are ignored. Variables already present in the
        environment win unless *override* is set.

        Returns:
            Self for chaining
        """
        path = Path(env_file)
        if path.exists():
            self._load_file(path, override)
        return self

    def _load_file(self, path: Path, override: bool) -> None:
        for line in path.read_text().splitlines():
            line = line.strip()

            if not line or line.startswith("#"):
                continue

            if line.startswith("export "):
                line = line[7:]

            if "=" not in line:
                continue

            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()

            quoted = len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'"
            if quoted:
                value = value[1:-1]
            else:
                # Inline comment
                value = value.split(" #", 1)[0].rstrip()

            value = self._expand_variables(value)
            self._cache[key] = value

            if self._export and (override or key not in os.environ):
                os.environ[key] = value

    def _expand_variables(self, value: str) -> str:
        def replace(match: re.Match) -> str:
            name = match.group(1) or match.group(2)
            return self._environ.get(name, self._cache.get(name, ""))

        return _VARIABLE.sub(replace, value)

    def get(
        self,
        key: str,
        default: Optional[str] = None,
        required: bool = False,
    ) -> Optional[str]:
        """
        Get a raw value.

        Raises:
            KeyError: If *required* and the variable is not set
        """
        value = self._environ.get(key)
        if value is None:
            value = self._cache.get(key, default)

        if value is None and required:
            raise KeyError(f"Required environment variable '{key}' is not set")

        return value

    def str(
        self,
        key: str,
        default: Optional[str] = None,
        required: bool = False,
    ) -> Optional[str]:
        """Get a string value; an empty string counts as unset."""
        value = self.get(key, required=required)
        return value if value else default

    def int(
        self,
        key: str,
        default: Optional[int] = None,
        required: bool = False,
    ) -> Optional[int]:
        """Get an integer value, falling back to *default* when unparsable."""
        value = self.get(key, required=required)

        if value is None or not value.strip():
            return default

        try:
            return int(value.strip())
        except ValueError:
            if default is not None:
                return default
            raise ValueError(f"Environment variable '{key}' is not a valid integer")

    def bool(
        self,
        key: str,
        default: Optional[bool] = None,
        required: bool = False,
    ) -> Optional[bool]:
        value = self.get(key, required=required)

        if value is None:
            return default

        if value.lower() in ("true", "1", "yes", "on", "enabled"):
            return True

        if value.lower() in ("false", "0", "no", "off", "disabled", ""):
            return False

        if default is not None:
            return default

        raise ValueError(f"Environment variable '{key}' is not a valid boolean")

    def list(
        self,
        key: str,
        default: Optional[List[str]] = None,
        separator: str = ",",
        required: bool = False,
    ) -> Optional[List[str]]:
        """Get a list value (comma-separated by default)."""
        value = self.get(key, required=required)

        if value is None:
            return default

        if not value:
            return []

        return [item.strip() for item in value.split(separator)]

    def __contains__(self, key: str) -> bool:
        return key in self._environ or key in self._cache
