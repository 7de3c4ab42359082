"""Graph model serving service.

``app`` holds the FastAPI application, the execution backends, the model
loader and the prediction runtime.
"""
