"""Execution backend adapters.

Adapters translate between the service's tensors and a numeric runtime's
native buffers. Keeping that translation here lets the loader and the
prediction pipeline stay runtime-agnostic.

Primary components:
- ``base``: ``ExecutionBackend`` interface, ``Tensor``, ``TensorLedger``, ``TensorScope``.
- ``onnxruntime_backend`` / ``torchscript_backend``: concrete runtimes.
- ``factory``: build a backend from its configured name.
"""

from .base import ExecutionBackend, LoadedGraph, Tensor, TensorLedger, TensorScope

__all__ = ["ExecutionBackend", "LoadedGraph", "Tensor", "TensorLedger", "TensorScope"]
