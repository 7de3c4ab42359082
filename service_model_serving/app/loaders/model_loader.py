"""Startup model loader.

Turns configuration plus an uninitialized ``ExecutionBackend`` into a ready
``ModelHandle``: initialize the runtime, fetch and parse the graph, discover
its input/output tensor names, and run one warm-up execution so lazy runtime
initialization and execution errors surface before real traffic arrives.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Tuple

import numpy as np
import structlog

from libs.common.config import ModelServingConfig
from libs.common.logging import log_performance
from ..adapters.base import ExecutionBackend
from ..errors import BackendInitError, GraphLoadError, LoadError, WarmupError
from .artifacts import fetch_artifact, resolve_model_location

logger = structlog.get_logger("model_serving.model_loader")

WARMUP_INPUT = np.zeros((1, 2), dtype=np.float32)


@dataclass(frozen=True)
class ModelHandle:
    """A loaded graph and the tensor names used to drive it.

    Immutable once created; shared read-only by every request.
    """

    graph: Any = field(repr=False)
    input_name: str
    output_name: str
    backend_id: str
    source: str
    input_names: Tuple[str, ...] = ()
    output_names: Tuple[str, ...] = ()


class ModelLoader:
    """Loads the configured model exactly once into a ``ModelHandle``."""

    def __init__(self, config: ModelServingConfig, backend: ExecutionBackend):
        self.config = config
        self.backend = backend

    async def load(self) -> ModelHandle:
        """Run every load step; any failure is raised as a ``LoadError``."""
        await self._timed("backend_init", self._initialize_backend())

        location = resolve_model_location(self.config)
        loaded = await self._timed("graph_load", self._load_graph(location), source=location)

        input_name, output_name = self._discover_names(loaded.input_names, loaded.output_names)
        handle = ModelHandle(
            graph=loaded.graph,
            input_name=input_name,
            output_name=output_name,
            backend_id=self.backend.backend_id,
            source=location,
            input_names=tuple(loaded.input_names),
            output_names=tuple(loaded.output_names),
        )
        logger.info(
            "Discovered model tensors",
            input_name=input_name,
            output_name=output_name
        )

        await self._timed("warmup", self._warmup(handle))

        logger.info(
            "Model loaded successfully",
            backend=handle.backend_id,
            source=location,
            input_name=input_name,
            output_name=output_name
        )
        return handle

    async def _timed(self, operation: str, step, **context):
        start_time = time.perf_counter()
        result = await step
        log_performance(
            f"model_load.{operation}",
            (time.perf_counter() - start_time) * 1000,
            backend=self.backend.backend_id,
            **context
        )
        return result

    async def _initialize_backend(self) -> None:
        try:
            await self.backend.initialize()
        except LoadError:
            raise
        except Exception as e:
            raise BackendInitError(str(e)) from e

    async def _load_graph(self, location: str):
        logger.info("Loading model graph", source=location, backend=self.backend.backend_id)
        source = await fetch_artifact(location, timeout=self.config.ml_model_fetch_timeout)
        try:
            return await self.backend.load_graph(source)
        except LoadError:
            raise
        except Exception as e:
            raise GraphLoadError(str(e)) from e

    @staticmethod
    def _discover_names(input_names, output_names) -> Tuple[str, str]:
        if not input_names:
            raise GraphLoadError("Model graph declares no inputs")
        if not output_names:
            raise GraphLoadError("Model graph declares no outputs")
        if len(input_names) > 1 or len(output_names) > 1:
            logger.warning(
                "Model declares several inputs/outputs; using the first of each",
                inputs=list(input_names),
                outputs=list(output_names)
            )
        return input_names[0], output_names[0]

    async def _warmup(self, handle: ModelHandle) -> None:
        try:
            with self.backend.scope() as scope:
                batch = scope.adopt(self.backend.tensor(WARMUP_INPUT))
                scope.adopt_all(await self.backend.execute(handle.graph, {handle.input_name: batch}))
        except Exception as e:
            raise WarmupError(str(e)) from e
