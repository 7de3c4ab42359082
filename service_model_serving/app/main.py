"""Model serving service main application."""

import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from libs.common.config import ModelServingConfig
from libs.common.logging import configure_logging
from libs.common.metrics import MetricsCollector, get_metrics_collector
from .adapters.base import ExecutionBackend
from .adapters.factory import create_backend_from_config
from .api.routes import router as api_router
from .errors import BackendInitError, ServingError
from .runtime.model_manager import FatalHandler, ModelManager, terminate_process
from .runtime.pipeline import PredictionPipeline
from .runtime.readiness import ReadinessGate

logger = structlog.get_logger("model_serving")

SERVICE_NAME = "model-serving"


def create_app(
    config: Optional[ModelServingConfig] = None,
    backend: Optional[ExecutionBackend] = None,
    metrics: Optional[MetricsCollector] = None,
    on_fatal: Optional[FatalHandler] = None
) -> FastAPI:
    """Build the FastAPI application and its serving components.

    The model is not loaded here. The lifespan starts the load in the
    background and the app accepts traffic at once; ``/predict`` answers 503
    until the readiness gate opens.

    Parameters
    - config: Serving configuration (defaults to ``ModelServingConfig()``)
    - backend: Execution backend (defaults to the one named by ``ML_BACKEND``,
      built when the app starts rather than at import)
    - metrics: Metrics collector (defaults to the process-wide collector)
    - on_fatal: Called with an exit code if the model fails to load
    """
    config = config or ModelServingConfig()
    configure_logging(SERVICE_NAME, config.ml_log_level, config.ml_log_format)

    metrics = metrics or get_metrics_collector(SERVICE_NAME)
    on_fatal = on_fatal or terminate_process
    gate = ReadinessGate()

    def start_serving(app: FastAPI) -> Optional[ModelManager]:
        """Resolve the backend and start the background load.

        A backend that cannot be built is a load failure: the gate is marked
        failed and ``on_fatal`` runs, as for any later load error.
        """
        try:
            active_backend = backend or create_backend_from_config(config)
        except BackendInitError as e:
            gate.mark_failed(e)
            logger.error(
                "Model load failed; terminating",
                backend=config.ml_backend,
                error_type=type(e).__name__,
                error=str(e)
            )
            on_fatal(1)
            return None

        model_manager = ModelManager(
            config,
            active_backend,
            gate,
            metrics=metrics,
            on_fatal=on_fatal
        )
        app.state.backend = active_backend
        app.state.pipeline = PredictionPipeline(active_backend, metrics=metrics)
        app.state.model_manager = model_manager

        logger.info(
            "Starting model serving service",
            backend=active_backend.backend_id,
            port=config.port,
            env=config.ml_env
        )
        model_manager.start()
        return model_manager

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        metrics.set_model_ready(False)
        model_manager = start_serving(app)

        yield

        logger.info("Shutting down model serving service")
        if model_manager is not None:
            await model_manager.cleanup()
        logger.info("Model serving service shutdown complete")

    app = FastAPI(
        title="Graph Model Serving Service",
        description="Serves a pretrained 2-D point classifier over HTTP",
        version="0.1.0",
        lifespan=lifespan
    )

    app.state.config = config
    app.state.metrics_collector = metrics
    app.state.gate = gate
    app.state.backend = None
    app.state.pipeline = None
    app.state.model_manager = None

    app.include_router(api_router)
    app.mount(
        "/model",
        StaticFiles(directory=config.ml_model_dir, check_dir=False),
        name="model"
    )

    @app.exception_handler(ServingError)
    async def serving_error_handler(request: Request, exc: ServingError):
        """Render service errors as ``{"error": <public message>}``."""
        if exc.status_code >= 500:
            logger.error(
                "Request failed",
                path=request.url.path,
                error_type=type(exc).__name__,
                error=str(exc)
            )
        else:
            logger.info(
                "Request rejected",
                path=request.url.path,
                status=exc.status_code,
                error_type=type(exc).__name__,
                error=str(exc)
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time header to responses."""
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Collect metrics for HTTP requests."""
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error("Unhandled request error", path=request.url.path, error=str(e), exc_info=True)
            status_code = 500
            response = JSONResponse(
                status_code=500,
                content={"error": "Internal server error"}
            )

        app.state.metrics_collector.record_http_request(
            method=request.method,
            endpoint=request.url.path,
            status=status_code,
            duration=time.time() - start_time
        )

        return response

    @app.get("/metrics")
    async def metrics_endpoint():
        """Prometheus metrics endpoint."""
        return Response(
            content=app.state.metrics_collector.get_metrics(),
            media_type="text/plain"
        )

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=app.state.config.ml_host,
        port=app.state.config.port,
        log_level="info"
    )
