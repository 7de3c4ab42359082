"""Serving runtime: readiness gate, model manager and prediction pipeline.

Import convenience:
- from service_model_serving.app.runtime.model_manager import ModelManager
"""
