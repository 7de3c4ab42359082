"""Prediction pipeline: request validation, batching, execution, decoding.

``parse_request`` validates a JSON payload without touching the backend; a
request is accepted whole or rejected whole, so no partial batch is ever
executed. ``PredictionPipeline.predict`` builds one ``[n, 2]`` float32 batch,
runs the model once, and decodes the first output into one probability per
point, in input order.
"""

import math
import numbers
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from libs.common.metrics import MetricsCollector
from ..adapters.base import ExecutionBackend
from ..errors import (
    InternalPredictError,
    InvalidPointError,
    InvalidThresholdError,
    MalformedBodyError,
    MissingFieldError,
    UnexpectedOutputShapeError,
)
from ..loaders.model_loader import ModelHandle

logger = structlog.get_logger("model_serving.pipeline")

DEFAULT_THRESHOLD = 0.5
POINT_DIMENSIONS = 2
FLOAT32_MAX = float(np.finfo(np.float32).max)


@dataclass(frozen=True)
class PredictionRequest:
    points: Tuple[Tuple[float, float], ...]
    threshold: float = DEFAULT_THRESHOLD

    @property
    def n(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class PredictionResult:
    probs: List[float]
    classes: List[int]
    threshold: float

    @property
    def n(self) -> int:
        return len(self.probs)


def _finite_number(value: Any) -> Optional[float]:
    """Return ``value`` as a float if it is a finite real number, else ``None``."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _parse_point(element: Any) -> Tuple[float, float]:
    if not isinstance(element, (list, tuple)) or len(element) != POINT_DIMENSIONS:
        raise InvalidPointError(f"Point is not a pair: {element!r}")
    x, y = (_finite_number(component) for component in element)
    if x is None or y is None:
        raise InvalidPointError(f"Point has a non-finite or non-numeric component: {element!r}")
    if abs(x) > FLOAT32_MAX or abs(y) > FLOAT32_MAX:
        raise InvalidPointError(f"Point component does not fit in float32: {element!r}")
    return x, y


def normalize_points(points: Any) -> Sequence[Any]:
    """Treat a lone ``[x, y]`` as a batch of one.

    A list whose first element is itself a list is already a batch; any other
    value is wrapped so per-point validation can reject it.
    """
    if isinstance(points, (list, tuple)) and points and isinstance(points[0], (list, tuple)):
        return points
    return [points]


def parse_threshold(value: Any) -> float:
    """Default to 0.5; finite values outside [0, 1] are accepted as-is."""
    if value is None:
        return DEFAULT_THRESHOLD
    threshold = _finite_number(value)
    if threshold is None:
        raise InvalidThresholdError(f"Invalid threshold: {value!r}")
    return threshold


def parse_request(payload: Any) -> PredictionRequest:
    """Validate a decoded JSON body into a ``PredictionRequest``.

    Raises
    - ``MalformedBodyError`` if the body is not an object
    - ``MissingFieldError`` if ``points`` is absent or null
    - ``InvalidPointError`` if any point is not two finite numbers
    - ``InvalidThresholdError`` if ``threshold`` is not a finite number
    """
    if not isinstance(payload, dict):
        raise MalformedBodyError(f"Expected a JSON object, got {type(payload).__name__}")

    points = payload.get("points")
    if points is None:
        raise MissingFieldError()

    batch = tuple(_parse_point(element) for element in normalize_points(points))
    return PredictionRequest(points=batch, threshold=parse_threshold(payload.get("threshold")))


def decode_probabilities(output: np.ndarray, batch_size: int) -> List[float]:
    """Read one probability per row from a ``[n, 1]`` or ``[n]`` output."""
    if output.ndim == 2 and output.shape == (batch_size, 1):
        column = output[:, 0]
    elif output.ndim == 1 and output.shape[0] == batch_size:
        column = output
    else:
        raise UnexpectedOutputShapeError(
            f"Expected output shape ({batch_size}, 1) or ({batch_size},), got {output.shape}"
        )

    probs = [float(p) for p in column]
    if not all(math.isfinite(p) for p in probs):
        raise UnexpectedOutputShapeError("Model produced non-finite probabilities")
    return probs


def apply_threshold(probs: Sequence[float], threshold: float) -> List[int]:
    return [1 if p >= threshold else 0 for p in probs]


class PredictionPipeline:
    """Runs validated requests against a loaded model.

    Parameters
    - backend: The backend the handle's graph was loaded on
    - metrics: Optional collector for inference counts and latency
    """

    def __init__(self, backend: ExecutionBackend, metrics: Optional[MetricsCollector] = None):
        self.backend = backend
        self.metrics = metrics

    async def predict(self, request: PredictionRequest, handle: ModelHandle) -> PredictionResult:
        """Execute one batch; every tensor allocated here is released before returning.

        Raises
        - ``InternalPredictError`` for any failure during execution or decoding
        """
        start_time = time.perf_counter()
        outcome = "error"
        try:
            result = await self._run(request, handle)
            outcome = "success"
            return result
        except Exception as e:
            logger.error(
                "Prediction failed",
                backend=handle.backend_id,
                batch_size=request.n,
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True
            )
            raise InternalPredictError(str(e)) from e
        finally:
            if self.metrics is not None:
                self.metrics.record_inference(
                    backend=handle.backend_id,
                    outcome=outcome,
                    batch_size=request.n,
                    duration=time.perf_counter() - start_time
                )
                self.metrics.set_live_tensors(self.backend.live_tensors)

    async def _run(self, request: PredictionRequest, handle: ModelHandle) -> PredictionResult:
        matrix = np.asarray(request.points, dtype=np.float32).reshape(request.n, POINT_DIMENSIONS)

        with self.backend.scope() as scope:
            batch = scope.adopt(self.backend.tensor(matrix))
            outputs = scope.adopt_all(
                await self.backend.execute(handle.graph, {handle.input_name: batch})
            )
            if not outputs:
                raise UnexpectedOutputShapeError("Model returned no outputs")
            output = await self.backend.to_array(outputs[0])
            probs = decode_probabilities(output, request.n)

        classes = apply_threshold(probs, request.threshold)
        return PredictionResult(probs=probs, classes=classes, threshold=request.threshold)
