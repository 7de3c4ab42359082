"""ONNX Runtime execution backend.

Graphs are ``InferenceSession`` objects built straight from the artifact
bytes. Tensors are ``OrtValue`` buffers so that the service, not the session,
decides when input and output memory is released.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import onnxruntime as ort
import structlog

from .base import ExecutionBackend, LoadedGraph
from ..errors import BackendInitError, GraphLoadError

logger = structlog.get_logger("model_serving.backend.onnxruntime")


class OnnxRuntimeBackend(ExecutionBackend):
    """Runs ONNX graphs through ``onnxruntime``.

    Parameters
    - providers: Preferred execution providers, in priority order. Only the
      ones available in the installed runtime are used.
    """

    supports_async_execution = True

    def __init__(self, providers: Optional[Sequence[str]] = None):
        super().__init__()
        self.requested_providers = list(providers or ["CPUExecutionProvider"])
        self.providers: List[str] = []

    @property
    def backend_id(self) -> str:
        if not self.providers:
            return "onnxruntime"
        return f"onnxruntime:{self.providers[0]}"

    async def initialize(self) -> None:
        available = ort.get_available_providers()
        self.providers = [p for p in self.requested_providers if p in available]
        if not self.providers:
            raise BackendInitError(
                f"None of the requested providers {self.requested_providers} "
                f"are available (runtime offers {available})"
            )
        logger.info(
            "ONNX Runtime initialized",
            version=ort.__version__,
            providers=self.providers
        )

    async def load_graph(self, source: bytes) -> LoadedGraph:
        try:
            session = await asyncio.to_thread(
                ort.InferenceSession, source, providers=self.providers
            )
        except Exception as e:
            raise GraphLoadError(f"onnxruntime rejected the model: {e}") from e

        return LoadedGraph(
            graph=session,
            input_names=[node.name for node in session.get_inputs()],
            output_names=[node.name for node in session.get_outputs()],
        )

    def _to_native(self, array: np.ndarray) -> Any:
        return ort.OrtValue.ortvalue_from_numpy(array)

    def _execute(self, graph: Any, feeds: Dict[str, Any]) -> List[Any]:
        output_names = [node.name for node in graph.get_outputs()]
        return list(graph.run_with_ort_values(output_names, feeds))

    async def _execute_async(self, graph: Any, feeds: Dict[str, Any]) -> List[Any]:
        return await asyncio.to_thread(self._execute, graph, feeds)

    def _read(self, native: Any) -> np.ndarray:
        return np.asarray(native.numpy())

    def _shape(self, native: Any) -> tuple:
        return tuple(native.shape())
