"""Readiness gate for prediction traffic.

A one-way state machine: ``LOADING -> READY`` on a successful load, or
``LOADING -> FAILED`` when loading fails (the process then exits). ``READY``
is never left. The model handle is published together with the ``READY``
state under one lock, so a reader that sees ``READY`` always sees the handle.
"""

import threading
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import NotReadyError
from ..loaders.model_loader import ModelHandle


class ReadinessState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ReadinessGate:
    """Tracks whether the model may serve; readers never block on loading."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = ReadinessState.LOADING
        self._handle: Optional[ModelHandle] = None
        self._backend_id: Optional[str] = None
        self._error: Optional[BaseException] = None

    @property
    def state(self) -> ReadinessState:
        return self._state

    @property
    def handle(self) -> Optional[ModelHandle]:
        return self._handle

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def attach_backend(self, backend_id: str) -> None:
        """Record the backend in use so health checks can report it while loading."""
        with self._lock:
            self._backend_id = backend_id

    def mark_ready(self, handle: ModelHandle) -> None:
        with self._lock:
            if self._state is not ReadinessState.LOADING:
                raise RuntimeError(f"Cannot mark ready from state {self._state.value}")
            self._handle = handle
            self._backend_id = handle.backend_id
            self._state = ReadinessState.READY

    def mark_failed(self, error: BaseException) -> None:
        with self._lock:
            if self._state is not ReadinessState.LOADING:
                raise RuntimeError(f"Cannot mark failed from state {self._state.value}")
            self._error = error
            self._state = ReadinessState.FAILED

    def is_ready(self) -> bool:
        return self._state is ReadinessState.READY

    def require(self) -> ModelHandle:
        """Return the handle, or raise ``NotReadyError`` unless ready."""
        with self._lock:
            if self._state is not ReadinessState.READY or self._handle is None:
                raise NotReadyError(f"Readiness state is {self._state.value}")
            return self._handle

    def describe(self) -> Dict[str, Any]:
        with self._lock:
            handle = self._handle
            return {
                "ready": self._state is ReadinessState.READY,
                "state": self._state.value,
                "backend_id": self._backend_id,
                "model_loaded": handle is not None,
                "input_name": handle.input_name if handle else None,
                "output_name": handle.output_name if handle else None,
            }
