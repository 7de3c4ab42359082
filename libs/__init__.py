"""Shared libraries for the model serving service.

Subpackages:
- ``libs.common``: configuration, logging, and metrics.

Notes:
- Avoid service-specific logic; keep modules cohesive and broadly useful.
"""
