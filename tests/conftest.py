# -*- coding: utf-8 -*-

"""Pytest fixtures and configuration."""

from contextlib import _GeneratorContextManager, contextmanager
from typing import Any, Callable, Generator, Iterator, List, Tuple, TypeVar

import pytest
from django.db import transaction
from django.dispatch import Signal

T = TypeVar("T")
Fixture = Generator[T, None, None]
ContextManagerFixture = Fixture[Callable[..., _GeneratorContextManager]]


@pytest.fixture(scope="session")
def rollback() -> ContextManagerFixture:
    """A fixture for providing an automatic rollback context manager.

    Yields a context manager that will automatically roll back any database changes
    made within its scope.

    Particularly useful when using Hypothesis to bypass its limitations with Pytest.

    Yields:
        Callable[[], None]: A context manager that will roll back any database changes
            made within its scope.
    """

    @contextmanager
    def _rollback() -> Iterator:
        """Automatically roll back any database changes made while yielding."""
        sid = transaction.savepoint()
        try:
            yield
        finally:
            transaction.savepoint_rollback(sid)

    yield _rollback


@pytest.fixture
def connect() -> Fixture[Callable[[Signal, Callable[..., Any]], None]]:
    """A fixture for connecting signal receivers for the duration of a test.

    Yields:
        Callable[[Signal, Callable], None]: A function that connects a receiver
            to a signal. Every connected receiver is disconnected when the test
            finishes.
    """
    connected: List[Tuple[Signal, Callable[..., Any]]] = []

    def _connect(signal: Signal, receiver: Callable[..., Any]) -> None:
        signal.connect(receiver, weak=False)
        connected.append((signal, receiver))

    yield _connect

    for signal, receiver in connected:
        signal.disconnect(receiver)
