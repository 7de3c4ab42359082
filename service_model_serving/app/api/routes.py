"""API routes for the model serving service."""

import json
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from ..errors import MalformedBodyError
from ..runtime.pipeline import PredictionPipeline, parse_request
from ..runtime.readiness import ReadinessGate

logger = structlog.get_logger("model_serving.api")

router = APIRouter()


class HealthResponse(BaseModel):
    """Response model for the health endpoint."""
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    ok: bool = Field(..., description="Whether predictions are being served")
    backend: Optional[str] = Field(None, description="Execution backend identifier")
    model_loaded: bool = Field(..., alias="modelLoaded", description="Whether a model handle exists")
    input_name: Optional[str] = Field(None, alias="inputName", description="Graph input tensor name")
    output_name: Optional[str] = Field(None, alias="outputName", description="Graph output tensor name")


class PredictResponse(BaseModel):
    """Response model for the prediction endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    n: int = Field(..., description="Number of points predicted")
    probs: List[float] = Field(..., description="Probability per point, in input order")
    classes: List[int] = Field(..., description="Thresholded class per point (0 or 1)")
    threshold: float = Field(..., description="Decision threshold applied")
    backend: str = Field(..., description="Execution backend identifier")
    input_name: str = Field(..., alias="inputName", description="Graph input tensor name")
    output_name: str = Field(..., alias="outputName", description="Graph output tensor name")


class ErrorResponse(BaseModel):
    error: str


def get_gate(request: Request) -> ReadinessGate:
    """Get the readiness gate from application state."""
    return request.app.state.gate


def get_pipeline(request: Request) -> PredictionPipeline:
    """Get the prediction pipeline from application state."""
    return request.app.state.pipeline


@router.get("/health", response_model=HealthResponse, response_model_by_alias=True)
async def health(gate: ReadinessGate = Depends(get_gate)):
    """Report readiness; never waits for the model to load."""
    status = gate.describe()
    return HealthResponse(
        ok=status["ready"],
        backend=status["backend_id"],
        model_loaded=status["model_loaded"],
        input_name=status["input_name"],
        output_name=status["output_name"],
    )


@router.post(
    "/predict",
    response_model=PredictResponse,
    response_model_by_alias=True,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def predict(
    request: Request,
    gate: ReadinessGate = Depends(get_gate),
    pipeline: PredictionPipeline = Depends(get_pipeline)
):
    """Predict probabilities and classes for a batch of 2-D points.

    Body: ``{"points": [x, y] | [[x, y], ...], "threshold": 0.5}``
    """
    handle = gate.require()

    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedBodyError(f"Body is not valid JSON: {e}") from e

    prediction_request = parse_request(payload)
    result = await pipeline.predict(prediction_request, handle)
    logger.debug(
        "Prediction completed",
        n=result.n,
        threshold=result.threshold,
        backend=handle.backend_id
    )

    return PredictResponse(
        n=result.n,
        probs=result.probs,
        classes=result.classes,
        threshold=result.threshold,
        backend=handle.backend_id,
        input_name=handle.input_name,
        output_name=handle.output_name,
    )
