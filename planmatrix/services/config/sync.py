"""
Configuration Sync

Fetches the plans matrix document from the remote endpoint.

Reuses a single HTTP client across fetches. Failures are raised as
SyncError subclasses; the repository decides how to fall back.
"""

import httpx
import yaml

from planmatrix.common.config import ConfigDocument, load_config_document
from planmatrix.common.exceptions import DocumentDecodeError, FetchError
from planmatrix.common.logging_setup import get_service_logger

logger = get_service_logger("config.sync")


class ConfigSync:
    """
    Retrieves a fresh ConfigDocument over HTTP.

    GET {base_url}/plans_matrix.yml, parsed as YAML.
    """

    def __init__(
        self,
        config_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.config_url = config_url
        self.timeout = timeout
        # Reusable HTTP client; an injected client is owned by the caller
        self._client: httpx.AsyncClient | None = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close HTTP client"""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch_config(self) -> ConfigDocument:
        """
        Fetch and decode the remote plans matrix.

        Returns:
            Decoded ConfigDocument

        Raises:
            FetchError: network failure, timeout or non-2xx status
            DocumentDecodeError: body is not valid YAML or not a valid document
        """
        client = await self._get_client()

        try:
            response = await client.get(
                self.config_url,
                headers={"Accept": "application/yaml, text/yaml, */*"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"HTTP {e.response.status_code} fetching config",
                url=self.config_url,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"HTTP error fetching config: {e}", url=self.config_url) from e

        try:
            payload = yaml.safe_load(response.text)
        except yaml.YAMLError as e:
            raise DocumentDecodeError(f"Invalid YAML: {e}") from e

        document = load_config_document(payload)

        logger.info(
            f"Config fetched (version={document.version}, "
            f"{len(document.plans)} plans, {len(document.roles)} roles)",
            extra={
                "url": self.config_url,
                "version": document.version,
                "generated_at": document.generated_at,
            },
        )

        return document
