"""TorchScript execution backend.

Loads a serialized ``torch.jit`` module on CPU in eval mode. TorchScript has
no named outputs, so outputs are reported as ``output_0``, ``output_1``, ...
in return order. Deserialization and forward passes run in a worker thread
so the event loop keeps serving ``/health`` while a large module loads.
"""

import asyncio
import io
from typing import Any, Dict, List, Tuple

import numpy as np
import structlog
import torch

from .base import ExecutionBackend, LoadedGraph
from ..errors import BackendInitError, GraphLoadError

logger = structlog.get_logger("model_serving.backend.torchscript")


class TorchScriptBackend(ExecutionBackend):
    """Runs TorchScript modules on the CPU, off the event loop."""

    supports_async_execution = True

    def __init__(self, device: str = "cpu"):
        super().__init__()
        self.device = device

    @property
    def backend_id(self) -> str:
        return f"torchscript:{self.device}"

    async def initialize(self) -> None:
        try:
            torch.device(self.device)
            torch.zeros(1, device=self.device)
        except Exception as e:
            raise BackendInitError(f"torch device {self.device!r} unavailable: {e}") from e
        logger.info("TorchScript initialized", version=torch.__version__, device=self.device)

    def _deserialize(self, source: bytes) -> Tuple[Any, Any]:
        module = torch.jit.load(io.BytesIO(source), map_location=self.device)
        module.eval()
        return module, module.forward.schema

    async def load_graph(self, source: bytes) -> LoadedGraph:
        try:
            module, schema = await asyncio.to_thread(self._deserialize, source)
        except Exception as e:
            raise GraphLoadError(f"torch.jit could not load the model: {e}") from e

        input_names = [arg.name for arg in schema.arguments if arg.name != "self"]
        output_names = [f"output_{i}" for i in range(max(len(schema.returns), 1))]
        return LoadedGraph(graph=module, input_names=input_names, output_names=output_names)

    def _to_native(self, array: np.ndarray) -> Any:
        return torch.from_numpy(array).to(self.device)

    def _execute(self, graph: Any, feeds: Dict[str, Any]) -> List[Any]:
        with torch.inference_mode():
            result = graph(**feeds)
        if isinstance(result, (list, tuple)):
            return list(result)
        return [result]

    async def _execute_async(self, graph: Any, feeds: Dict[str, Any]) -> List[Any]:
        return await asyncio.to_thread(self._execute, graph, feeds)

    def _read(self, native: Any) -> np.ndarray:
        return native.detach().cpu().numpy()

    def _shape(self, native: Any) -> tuple:
        return tuple(native.shape)
