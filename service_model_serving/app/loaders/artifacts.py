"""Model artifact resolution and retrieval.

The artifact is whatever the configured backend can parse (an ``.onnx`` file
or a TorchScript archive). It can live on local disk or behind any HTTP
static file server, including this service's own ``/model`` mount.
"""

import asyncio
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx
import structlog

from libs.common.config import ModelServingConfig
from ..errors import GraphLoadError

logger = structlog.get_logger("model_serving.artifacts")


def resolve_model_location(config: ModelServingConfig) -> str:
    """Return the artifact URL or path the loader should read.

    ``ML_MODEL_URL`` wins when set; otherwise the artifact is
    ``<ML_MODEL_DIR>/<ML_MODEL_FILE>``.
    """
    if config.ml_model_url:
        return config.ml_model_url
    return str(config.model_dir_path / config.ml_model_file)


def is_remote(location: str) -> bool:
    return urlparse(location).scheme in ("http", "https")


async def fetch_artifact(
    location: str,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> bytes:
    """Read the artifact bytes from ``location``.

    ``transport`` is handed to ``httpx`` for remote locations.

    Raises
    - ``GraphLoadError`` when the artifact cannot be read
    """
    if is_remote(location):
        return await _fetch_remote(location, timeout, transport)
    return await _read_local(location)


async def _fetch_remote(
    url: str,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport]
) -> bytes:
    try:
        async with httpx.AsyncClient(
            timeout=timeout, follow_redirects=True, transport=transport
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        raise GraphLoadError(f"Failed to fetch model from {url}: {e}") from e

    logger.info("Fetched model artifact", url=url, size_bytes=len(response.content))
    return response.content


async def _read_local(location: str) -> bytes:
    parsed = urlparse(location)
    path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(location)

    try:
        data = await asyncio.to_thread(path.read_bytes)
    except OSError as e:
        raise GraphLoadError(f"Failed to read model from {path}: {e}") from e

    logger.info("Read model artifact", path=str(path), size_bytes=len(data))
    return data
