"""Execution backend factory.

Centralizes creation of concrete ``ExecutionBackend`` implementations so the
service entrypoint only deals with a backend name from configuration.
Runtime libraries are imported when their backend is selected, so a process
configured for ONNX Runtime never imports torch and vice versa.
"""

from enum import Enum
from typing import Optional

import structlog

from libs.common.config import ModelServingConfig
from .base import ExecutionBackend
from ..errors import BackendInitError

logger = structlog.get_logger("model_serving.backend.factory")


class BackendType(Enum):
    """Supported execution backends."""
    ONNXRUNTIME = "onnxruntime"
    TORCHSCRIPT = "torchscript"


def create_backend(name: str, config: Optional[ModelServingConfig] = None) -> ExecutionBackend:
    """Create an execution backend by name.

    Parameters
    - name: A ``BackendType`` value (case-insensitive)
    - config: Serving config for backend-specific options (ORT providers)

    Raises
    - ``BackendInitError`` for unknown names or a runtime that cannot be imported
    """
    try:
        backend_type = BackendType(name.strip().lower())
    except ValueError as e:
        supported = [t.value for t in BackendType]
        raise BackendInitError(f"Unknown backend {name!r}; expected one of {supported}") from e

    try:
        if backend_type == BackendType.ONNXRUNTIME:
            from .onnxruntime_backend import OnnxRuntimeBackend
            providers = config.ml_onnx_providers if config is not None else None
            backend: ExecutionBackend = OnnxRuntimeBackend(providers=providers)
        else:
            from .torchscript_backend import TorchScriptBackend
            backend = TorchScriptBackend()
    except ImportError as e:
        raise BackendInitError(f"Backend {backend_type.value!r} is not installed: {e}") from e

    logger.info("Created execution backend", backend=backend_type.value)
    return backend


def create_backend_from_config(config: ModelServingConfig) -> ExecutionBackend:
    """Create the backend selected by ``ML_BACKEND``."""
    return create_backend(config.ml_backend, config)
