"""Error taxonomy for the model serving service.

Every error carries the HTTP status it maps to and a short public message.
The public message is the only text that ever reaches a response body; the
exception's own string (``str(err)``) may hold backend detail and is logged
server side only.

Families
- ``LoadError``: fatal, raised while loading; the process stops before serving
- ``NotReadyError``: 503, retryable once the model is loaded
- ``PayloadValidationError``: 400, client-caused
- ``ExecutionError``: 500, server-side failure during a prediction
"""

from typing import Optional


class ServingError(Exception):
    """Base class for all service errors."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None, public_message: Optional[str] = None):
        super().__init__(detail or public_message or self.public_message)
        if public_message is not None:
            self.public_message = public_message

    def to_response(self) -> dict:
        return {"error": self.public_message}


class LoadError(ServingError):
    """Model could not be made ready; never surfaces to a request."""

    public_message = "Model failed to load"


class BackendInitError(LoadError):
    public_message = "Execution backend unavailable"


class GraphLoadError(LoadError):
    public_message = "Model graph could not be loaded"


class WarmupError(LoadError):
    public_message = "Model warm-up execution failed"


class NotReadyError(ServingError):
    status_code = 503
    public_message = "Model not loaded"


class PayloadValidationError(ServingError):
    """Request payload rejected before any backend call."""

    status_code = 400
    public_message = "Invalid request"


class MalformedBodyError(PayloadValidationError):
    public_message = "Request body must be a JSON object"


class MissingFieldError(PayloadValidationError):
    public_message = 'Missing "points"'


class InvalidPointError(PayloadValidationError):
    public_message = "Each point must be [x, y] with finite numbers"


class InvalidThresholdError(PayloadValidationError):
    public_message = '"threshold" must be a finite number'


class ExecutionError(ServingError):
    status_code = 500
    public_message = "Internal prediction error"


class UnexpectedOutputShapeError(ExecutionError):
    """Model output cannot be read as one probability per point."""


class InternalPredictError(ExecutionError):
    """Opaque wrapper for any failure during execution or decoding."""
