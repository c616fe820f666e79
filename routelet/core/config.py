"""
Routelet Configuration
======================

Listen and logging settings read from the environment.

Variables:
    LISTEN_HOST  - bind address (default: 0.0.0.0)
    PORT         - bind port (default: 8000)
    LOG_LEVEL    - info | warn | error (default: info)

Explicit options passed to ``Router.listen`` override the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Union

from routelet.utils.env import Env
from routelet.utils.logger import (
    Logger,
    LogLevel,
    StreamHandler,
    parse_level,
)


DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000


@dataclass(frozen=True)
class ListenConfig:
    """
    Where and how to serve.

    Attributes:
        host: Bind address
        port: Bind port (0 picks a free port)
        server_options: Extra keyword arguments for ``uvicorn.Config``
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    server_options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env: Optional[Env] = None) -> "ListenConfig":
        env = env or Env()
        return cls(
            host=env.str("LISTEN_HOST", default=DEFAULT_HOST),
            port=env.int("PORT", default=DEFAULT_PORT),
        )

    def merged(
        self,
        options: Union["ListenConfig", Mapping[str, Any], None],
    ) -> "ListenConfig":
        """
        Overlay explicit *options* on this config.

        A mapping may carry ``host`` and ``port``; any other key is
        passed through to uvicorn.
        """
        if options is None:
            return self
        if isinstance(options, ListenConfig):
            return options

        extra = {k: v for k, v in options.items() if k not in ("host", "port")}
        return replace(
            self,
            host=options.get("host", self.host),
            port=int(options.get("port", self.port)),
            server_options={**self.server_options, **extra},
        )


def log_level_from_env(env: Optional[Env] = None) -> LogLevel:
    """``LOG_LEVEL`` as a LogLevel; unrecognized values mean INFO."""
    env = env or Env()
    return parse_level(env.get("LOG_LEVEL"))


def logger_from_env(env: Optional[Env] = None, name: str = "routelet") -> Logger:
    """
    A stderr logger whose minimum severity comes from ``LOG_LEVEL``.

    The logger is private to its caller; the ``get_logger`` registry is
    left untouched.
    """
    level = log_level_from_env(env)
    handler = StreamHandler(level=level)
    return Logger(name=name, level=level, handlers=[handler])
