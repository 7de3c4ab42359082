"""Model serving service package.

Layout:
- ``adapters``: execution backends (ONNX Runtime, TorchScript) and tensor scoping.
- ``loaders``: artifact resolution and the startup model loader.
- ``runtime``: readiness gate, model manager and prediction pipeline.
- ``api``: REST endpoints for prediction.

Import convenience:
- from service_model_serving.app.main import create_app
"""
