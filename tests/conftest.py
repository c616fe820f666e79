"""Shared fixtures for the routelet test suite."""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from routelet.core.application import Router
from routelet.core.context import Context
from routelet.core.request import Request
from routelet.utils.env import Env
from routelet.utils.logger import LogHandler, Logger, LogLevel, LogRecord


class RecordingHandler(LogHandler):
    """Keeps emitted records in memory."""

    def __init__(self) -> None:
        super().__init__(level=LogLevel.DEBUG)
        self.records: List[LogRecord] = []

    def emit(self, record: LogRecord) -> None:
        self.records.append(record)

    def messages(self, level: LogLevel = None) -> List[str]:
        return [
            r.message for r in self.records
            if level is None or r.level == level
        ]


@pytest.fixture
def recorder() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def logger(recorder: RecordingHandler) -> Logger:
    return Logger("routelet.test", level=LogLevel.DEBUG, handlers=[recorder])


@pytest.fixture
def router(logger: Logger) -> Router:
    return Router(logger=logger, env=Env({}))


@pytest.fixture
def make_context(logger: Logger):
    def factory(
        method: str = "GET",
        path: str = "/",
        params: Dict[str, str] = None,
        **kwargs: Any,
    ) -> Context:
        return Context(
            request=Request.build(method, path, **kwargs),
            log=logger,
            params=params,
        )

    return factory
