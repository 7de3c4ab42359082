"""Model loading for the serving process.

Loaders encapsulate how the model artifact is located (local path, ``file://``
or HTTP URL), materialized by the execution backend, and warmed up before
the service reports ready.
"""
