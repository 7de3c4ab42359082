"""Model manager for the serving process.

Owns the one-shot background load: runs the ``ModelLoader`` as an asyncio
task so the HTTP surface (``/health`` in particular) is reachable while the
model loads, then publishes the outcome to the ``ReadinessGate``. A load
failure is fatal: a server that cannot serve predictions should not run.
"""

import asyncio
import os
import sys
from contextlib import suppress
from typing import Callable, Optional

import structlog

from libs.common.config import ModelServingConfig
from libs.common.metrics import MetricsCollector
from ..adapters.base import ExecutionBackend
from ..loaders.model_loader import ModelHandle, ModelLoader
from .readiness import ReadinessGate

logger = structlog.get_logger("model_serving.model_manager")

FatalHandler = Callable[[int], None]


def terminate_process(exit_code: int) -> None:
    """Flush output and exit immediately, from any thread or task."""
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(exit_code)


class ModelManager:
    """Loads the model once in the background and gates traffic on the result.

    Parameters
    - config: ``ModelServingConfig`` for artifact location and timeouts
    - backend: The execution backend the model runs on
    - gate: Readiness gate shared with the request handlers
    - loader: Optional pre-built loader (defaults to ``ModelLoader``)
    - metrics: Optional collector updated with readiness
    - on_fatal: Called with an exit code when loading fails
    """

    def __init__(
        self,
        config: ModelServingConfig,
        backend: ExecutionBackend,
        gate: ReadinessGate,
        loader: Optional[ModelLoader] = None,
        metrics: Optional[MetricsCollector] = None,
        on_fatal: Optional[FatalHandler] = None
    ):
        self.config = config
        self.backend = backend
        self.gate = gate
        self.loader = loader or ModelLoader(config, backend)
        self.metrics = metrics
        self.on_fatal = on_fatal or terminate_process
        self._load_task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        """Schedule the load on the running loop. Later calls return the same task."""
        if self._load_task is None:
            self.gate.attach_backend(self.backend.backend_id)
            self._load_task = asyncio.create_task(self._load(), name="model-load")
        return self._load_task

    async def _load(self) -> Optional[ModelHandle]:
        logger.info("Model load started", backend=self.backend.backend_id)
        try:
            handle = await self.loader.load()
        except asyncio.CancelledError:
            logger.info("Model load cancelled")
            raise
        except Exception as e:
            self.gate.mark_failed(e)
            logger.error(
                "Model load failed; terminating",
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True
            )
            self.on_fatal(1)
            return None

        self.gate.mark_ready(handle)
        if self.metrics is not None:
            self.metrics.set_model_ready(True)
            self.metrics.set_live_tensors(self.backend.live_tensors)
        logger.info(
            "Model ready",
            backend=handle.backend_id,
            input_name=handle.input_name,
            output_name=handle.output_name
        )
        return handle

    async def wait_until_settled(self) -> Optional[ModelHandle]:
        """Wait for the load task to finish; returns the handle on success."""
        if self._load_task is None:
            raise RuntimeError("Model load has not been started")
        return await asyncio.shield(self._load_task)

    async def cleanup(self) -> None:
        """Cancel an unfinished load at shutdown."""
        task = self._load_task
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        logger.info("Model manager cleaned up")
