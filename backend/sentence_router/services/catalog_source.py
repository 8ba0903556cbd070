"""
Catalog Source - where the endpoint catalog comes from.

Two sources, tried in order:
1. Remote endpoint service (preferred when configured), keyed by the caller's
   identity. The service streams NDJSON; every line is one batch
   {"endpoints": [...]} and batches are concatenated in arrival order.
2. Local YAML file {"endpoints": [...]}.

A remote failure (or an empty remote list) falls back to the local file.
A local file that is missing, unparseable or empty is a ConfigurationError.

This module does NOT:
- Match sentences to endpoints
- Cache catalogs between requests
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import httpx
import yaml
from pydantic import ValidationError

from sentence_router.models.endpoint import Endpoint, EndpointCatalog
from sentence_router.services.pipeline_errors import ConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# LOCAL FILE
# =============================================================================

def load_endpoints_file(path: Path) -> List[Endpoint]:
    """
    Load and validate the local catalog file.

    Raises:
        ConfigurationError: file missing, unparseable, or no endpoints
    """
    path = Path(path)
    if not path.exists():
        logger.error(f"Local endpoints file not found: {path}")
        raise ConfigurationError(
            f"No endpoint configuration available: {path.name} file not found "
            f"and remote endpoint service unavailable",
            metadata={"path": str(path)},
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        catalog = EndpointCatalog.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        logger.error(f"Failed to parse local endpoints file: {e}")
        raise ConfigurationError(
            f"No endpoint configuration available: Failed to parse {path.name}: {e}",
            metadata={"path": str(path)},
        ) from e

    if not catalog.endpoints:
        raise ConfigurationError(
            "Local endpoints file contains no endpoints",
            metadata={"path": str(path)},
        )

    logger.info(f"Loaded {len(catalog.endpoints)} endpoints from local file")
    return catalog.endpoints


# =============================================================================
# REMOTE SERVICE
# =============================================================================

class RemoteCatalogError(Exception):
    """Transport-level failure talking to the endpoint service."""


class RemoteCatalogClient:
    """
    HTTP client for the remote endpoint service.

    TRANSPORT LAYER only: fetches and validates batches, nothing else.
    """

    ENDPOINTS_PATH = "/endpoints/default"
    HEALTH_PATH = "/health"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout_seconds)

    async def fetch(self, identity: str) -> List[Endpoint]:
        """Stream all endpoint batches for `identity`."""
        logger.info(f"Fetching endpoints for email: {identity}")
        endpoints: List[Endpoint] = []

        try:
            async with self._client.stream(
                "GET", self.ENDPOINTS_PATH, params={"email": identity}
            ) as response:
                if response.status_code >= 400:
                    raise RemoteCatalogError(
                        f"Endpoint service returned HTTP {response.status_code}"
                    )
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    batch = EndpointCatalog.model_validate(json.loads(line))
                    logger.info(f"Received batch of {len(batch.endpoints)} endpoints")
                    endpoints.extend(batch.endpoints)
            # ids must be unique across batches too
            EndpointCatalog(endpoints=endpoints)
        except httpx.HTTPError as e:
            raise RemoteCatalogError(f"Endpoint service request failed: {e}") from e
        except (ValueError, ValidationError) as e:
            raise RemoteCatalogError(f"Endpoint service sent an invalid batch: {e}") from e

        logger.info(f"Fetched {len(endpoints)} endpoints from remote service")
        return endpoints

    async def check_health(self) -> bool:
        try:
            response = await self._client.get(self.HEALTH_PATH)
        except httpx.HTTPError as e:
            logger.warning(f"Endpoint service is not available at {self.base_url}: {e}")
            return False
        available = response.status_code < 500
        if available:
            logger.info(f"Endpoint service is available at {self.base_url}")
        return available

    async def aclose(self) -> None:
        await self._client.aclose()


# =============================================================================
# CATALOG SOURCE
# =============================================================================

class CatalogSource:
    """
    Loads the catalog for one request. Shared read-only across requests.
    """

    def __init__(self, endpoints_path: Path, remote: Optional[RemoteCatalogClient] = None):
        self.endpoints_path = Path(endpoints_path)
        self.remote = remote

    async def load(self, identity: str) -> List[Endpoint]:
        """
        Remote first, then the local file.

        Raises:
            ConfigurationError: nothing usable from either source
        """
        if self.remote is not None:
            logger.info(f"Loading endpoints from remote API: {self.remote.base_url}")
            try:
                endpoints = await self.remote.fetch(identity)
            except RemoteCatalogError as e:
                logger.error(f"Failed to load endpoints from remote API: {e}")
            else:
                if endpoints:
                    return endpoints
                logger.warning("Remote API returned an empty endpoints list")

        logger.info("Attempting to load endpoints from local file")
        return await asyncio.to_thread(load_endpoints_file, self.endpoints_path)

    async def verify(self) -> bool:
        """True if either the remote service or the local file is available."""
        if self.remote is not None:
            if await self.remote.check_health():
                return True
            logger.info("Remote endpoint service unavailable, checking for local endpoints file")

        if self.endpoints_path.is_file():
            logger.info("Local endpoints file exists")
            return True

        logger.error("No local endpoints file found and no remote service available")
        return False

    async def aclose(self) -> None:
        if self.remote is not None:
            await self.remote.aclose()
