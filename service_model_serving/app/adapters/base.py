"""Base execution backend interface.

Defines the contract the loader and the prediction pipeline depend on,
independent of the numeric runtime behind it (ONNX Runtime, TorchScript).

Every buffer handed out by a backend is wrapped in a ``Tensor`` that is
registered in the backend's ``TensorLedger``. Callers release buffers through
a ``TensorScope``, which disposes everything it adopted when the ``with``
block exits, whether it exits normally or by an exception.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Dict, List

import numpy as np


class TensorLedger:
    """Thread-safe count of tensors allocated and not yet released."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._live = 0
        self._allocated = 0

    def register(self) -> None:
        with self._lock:
            self._live += 1
            self._allocated += 1

    def release(self) -> None:
        with self._lock:
            self._live -= 1

    @property
    def live(self) -> int:
        return self._live

    @property
    def allocated(self) -> int:
        """Total tensors ever registered."""
        return self._allocated


class Tensor:
    """A backend buffer with an explicit, exactly-once release.

    ``value`` is the native object (``OrtValue``, ``torch.Tensor``, ...);
    reading it after ``dispose()`` raises ``RuntimeError``.
    """

    __slots__ = ("_value", "_ledger", "shape")

    def __init__(self, value: Any, ledger: TensorLedger, shape: tuple):
        self._value = value
        self._ledger = ledger
        self.shape = tuple(shape)
        ledger.register()

    @property
    def value(self) -> Any:
        if self._value is None:
            raise RuntimeError("Tensor used after dispose")
        return self._value

    @property
    def disposed(self) -> bool:
        return self._value is None

    def dispose(self) -> None:
        """Release the native buffer. Later calls are no-ops."""
        if self._value is None:
            return
        self._value = None
        self._ledger.release()

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "live"
        return f"Tensor(shape={self.shape}, {state})"


class TensorScope:
    """Collects tensors and disposes all of them when the scope closes."""

    def __init__(self) -> None:
        self._stack = ExitStack()

    def adopt(self, tensor: Tensor) -> Tensor:
        self._stack.callback(tensor.dispose)
        return tensor

    def adopt_all(self, tensors: List[Tensor]) -> List[Tensor]:
        for tensor in tensors:
            self.adopt(tensor)
        return tensors

    def close(self) -> None:
        self._stack.close()

    def __enter__(self) -> "TensorScope":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass
class LoadedGraph:
    """An executable graph plus its declared tensor names, in declaration order."""

    graph: Any
    input_names: List[str] = field(default_factory=list)
    output_names: List[str] = field(default_factory=list)


class ExecutionBackend(ABC):
    """Abstract base class for numeric execution backends.

    Implementations set ``supports_async_execution`` when they provide a
    non-blocking execution path; ``execute`` picks the path, so callers make
    a single call regardless of backend.
    """

    supports_async_execution: bool = False

    def __init__(self) -> None:
        self.ledger = TensorLedger()

    @property
    @abstractmethod
    def backend_id(self) -> str:
        """Identifier reported to clients, e.g. ``onnxruntime:CPUExecutionProvider``."""

    @property
    def live_tensors(self) -> int:
        return self.ledger.live

    @abstractmethod
    async def initialize(self) -> None:
        """Select and initialize the runtime.

        Raises
        - ``BackendInitError`` when the runtime is unavailable
        """

    @abstractmethod
    async def load_graph(self, source: bytes) -> LoadedGraph:
        """Parse serialized model bytes into an executable graph."""

    @abstractmethod
    def _to_native(self, array: np.ndarray) -> Any:
        """Wrap a float32 host array in the runtime's tensor type."""

    @abstractmethod
    def _execute(self, graph: Any, feeds: Dict[str, Any]) -> List[Any]:
        """Run the graph synchronously on native feeds; return native outputs."""

    @abstractmethod
    def _read(self, native: Any) -> np.ndarray:
        """Copy a native tensor into a host ``np.ndarray``."""

    @abstractmethod
    def _shape(self, native: Any) -> tuple:
        """Shape of a native tensor."""

    async def _execute_async(self, graph: Any, feeds: Dict[str, Any]) -> List[Any]:
        raise NotImplementedError

    def tensor(self, array: Any) -> Tensor:
        """Allocate a float32 tensor registered in the ledger."""
        host = np.ascontiguousarray(array, dtype=np.float32)
        return Tensor(self._to_native(host), self.ledger, host.shape)

    def scope(self) -> TensorScope:
        return TensorScope()

    async def execute(self, graph: Any, feeds: Dict[str, Tensor]) -> List[Tensor]:
        """Run ``graph`` once and return every output as a ledger tensor."""
        native_feeds = {name: tensor.value for name, tensor in feeds.items()}
        if self.supports_async_execution:
            outputs = await self._execute_async(graph, native_feeds)
        else:
            outputs = self._execute(graph, native_feeds)
        return [self._wrap_output(output) for output in outputs]

    async def to_array(self, tensor: Tensor) -> np.ndarray:
        return self._read(tensor.value)

    def _wrap_output(self, native: Any) -> Tensor:
        return Tensor(native, self.ledger, self._shape(native))
