"""A minimal node: declared parameters and in-process topic publishers."""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable

DEFAULT_NUM_CALLBACK_THREADS = 5
DEFAULT_POSTPROCESSOR_NUM_THREADS = 1


class ParameterAlreadyDeclaredError(LookupError):
    """Raised when a parameter is declared twice."""


class ParameterNotDeclaredError(LookupError):
    """Raised when an undeclared parameter is read or written."""


class Publisher:
    """Delivers published messages to every subscribed callback."""

    def __init__(self, topic: str) -> None:
        self.topic = topic
        self._callbacks: list[Callable[[Any], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[Any], None]) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def publish(self, message: Any) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback(message)

    def subscription_count(self) -> int:
        with self._lock:
            return len(self._callbacks)


class Node:
    """Holds typed parameters and the publishers of one named node."""

    def __init__(self, name: str, namespace: str = "/", parameter_overrides: dict[str, Any] | None = None) -> None:
        self.name = name
        self.namespace = namespace
        self.logger = logging.getLogger(name)
        self._overrides = dict(parameter_overrides or {})
        self._parameters: dict[str, Any] = {}
        self._publishers: dict[str, Publisher] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _coerce(name: str, current: Any, value: Any) -> Any:
        if current is None or value is None:
            return value
        if isinstance(current, bool) != isinstance(value, bool):
            raise TypeError(f"parameter '{name}' expects {type(current).__name__}, got {type(value).__name__}")
        if isinstance(current, float) and isinstance(value, int):
            return float(value)
        if type(value) is not type(current):
            raise TypeError(f"parameter '{name}' expects {type(current).__name__}, got {type(value).__name__}")
        return value

    def declare_parameter(self, name: str, default: Any = None) -> Any:
        """Declare a parameter; an override given at construction wins over ``default``."""
        with self._lock:
            if name in self._parameters:
                raise ParameterAlreadyDeclaredError(f"parameter '{name}' has already been declared")
            value = default
            if name in self._overrides:
                value = self._coerce(name, default, self._overrides[name])
            self._parameters[name] = copy.deepcopy(value)
            return copy.deepcopy(value)

    def get_parameter(self, name: str) -> Any:
        with self._lock:
            if name not in self._parameters:
                raise ParameterNotDeclaredError(f"parameter '{name}' has not been declared")
            return copy.deepcopy(self._parameters[name])

    def set_parameter(self, name: str, value: Any) -> None:
        with self._lock:
            if name not in self._parameters:
                raise ParameterNotDeclaredError(f"parameter '{name}' has not been declared")
            self._parameters[name] = copy.deepcopy(self._coerce(name, self._parameters[name], value))

    def has_parameter(self, name: str) -> bool:
        with self._lock:
            return name in self._parameters

    def create_publisher(self, topic: str) -> Publisher:
        """Return the publisher of ``topic``, creating it on first use."""
        with self._lock:
            return self._publishers.setdefault(topic, Publisher(topic))