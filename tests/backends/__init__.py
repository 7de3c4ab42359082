"""Backend integration tests.

Run the loader and the prediction pipeline against real numeric runtimes
(ONNX Runtime, TorchScript) with small graphs built on the fly. Skipped when
the runtime is not installed.
"""
