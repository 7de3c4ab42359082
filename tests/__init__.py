"""Tests for the model serving service.

Unit tests run against an in-memory stub backend (see ``conftest.py``).
``tests/backends`` exercises the real runtimes and is skipped when they are
not installed.
"""
