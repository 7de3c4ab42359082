"""Shared fixtures: a deterministic in-memory execution backend and helpers."""

import asyncio
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import pytest
from prometheus_client import CollectorRegistry

from libs.common.config import ModelServingConfig
from libs.common.metrics import MetricsCollector
from service_model_serving.app.adapters.base import ExecutionBackend, LoadedGraph
from service_model_serving.app.loaders.model_loader import ModelHandle


def step_probabilities(points: np.ndarray) -> np.ndarray:
    """0.9 for points right of x=5, 0.1 otherwise, as an ``[n, 1]`` column."""
    return np.where(points[:, 0] > 5, 0.9, 0.1).reshape(-1, 1)


class StubGraph:
    """A fake graph: a function from the input batch to a list of outputs."""

    def __init__(
        self,
        fn: Callable[[np.ndarray], Any] = step_probabilities,
        input_names: Sequence[str] = ("points",),
        output_names: Sequence[str] = ("probability",)
    ):
        self.fn = fn
        self.input_names = list(input_names)
        self.output_names = list(output_names)
        self.calls = 0
        self.seen: List[np.ndarray] = []

    def __call__(self, batch: np.ndarray) -> List[np.ndarray]:
        self.calls += 1
        self.seen.append(batch.copy())
        result = self.fn(batch)
        if isinstance(result, list):
            return [np.asarray(r) for r in result]
        return [np.asarray(result)]


class StubBackend(ExecutionBackend):
    """Deterministic backend over numpy arrays with a real tensor ledger.

    Parameters
    - graph: The ``StubGraph`` returned by ``load_graph``
    - fail_init / fail_load: Raise from ``initialize`` / ``load_graph``
    - hold: Block ``load_graph`` until ``release()`` is called
    - async_path: Exercise the asynchronous execution branch
    """

    def __init__(
        self,
        graph: Optional[StubGraph] = None,
        fail_init: bool = False,
        fail_load: bool = False,
        hold: bool = False,
        async_path: bool = False
    ):
        super().__init__()
        self.graph = graph or StubGraph()
        self.fail_init = fail_init
        self.fail_load = fail_load
        self.supports_async_execution = async_path
        self.loaded_sources: List[bytes] = []
        self._released = threading.Event()
        if not hold:
            self._released.set()

    @property
    def backend_id(self) -> str:
        return "stub"

    def release(self) -> None:
        self._released.set()

    async def initialize(self) -> None:
        if self.fail_init:
            raise RuntimeError("stub runtime unavailable")

    async def load_graph(self, source: bytes) -> LoadedGraph:
        while not self._released.is_set():
            await asyncio.sleep(0.005)
        if self.fail_load:
            raise ValueError("stub graph is corrupt")
        self.loaded_sources.append(source)
        return LoadedGraph(
            graph=self.graph,
            input_names=self.graph.input_names,
            output_names=self.graph.output_names,
        )

    def _to_native(self, array: np.ndarray) -> Any:
        return array.copy()

    def _execute(self, graph: Any, feeds: Dict[str, Any]) -> List[Any]:
        return graph(feeds[graph.input_names[0]])

    async def _execute_async(self, graph: Any, feeds: Dict[str, Any]) -> List[Any]:
        await asyncio.sleep(0)
        return self._execute(graph, feeds)

    def _read(self, native: Any) -> np.ndarray:
        return np.asarray(native)

    def _shape(self, native: Any) -> tuple:
        return tuple(np.shape(native))


@pytest.fixture
def stub_graph():
    return StubGraph()


@pytest.fixture
def stub_backend(stub_graph):
    return StubBackend(graph=stub_graph)


@pytest.fixture
def serving_config(tmp_path):
    """Config pointing at a throwaway artifact in ``tmp_path``."""
    (tmp_path / "model.bin").write_bytes(b"stub-model")
    return ModelServingConfig(
        ml_model_dir=str(tmp_path),
        ml_model_file="model.bin",
        ml_model_url=None,
        ml_log_format="console",
    )


@pytest.fixture
def metrics():
    return MetricsCollector("test-service", registry=CollectorRegistry())


@pytest.fixture
def model_handle(stub_graph):
    return ModelHandle(
        graph=stub_graph,
        input_name="points",
        output_name="probability",
        backend_id="stub",
        source="memory",
    )


class FatalRecorder:
    """Stands in for process termination; records exit codes."""

    def __init__(self):
        self.codes: List[int] = []

    def __call__(self, exit_code: int) -> None:
        self.codes.append(exit_code)


@pytest.fixture
def fatal_recorder():
    return FatalRecorder()
