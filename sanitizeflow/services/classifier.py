from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..config import ClassifierConfig
from ..contracts import AccessGrant, ClassificationResult
from ..errors import ClassificationRejectedError
from .base import ServiceClient

logger = logging.getLogger(__name__)


class TypeClassifier(ServiceClient):
    """Client for the file type detection service."""

    service_name = "classification service"

    def __init__(
        self,
        url: str,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(url, client=client, timeout=timeout)
        self._api_key = api_key

    @classmethod
    def from_config(
        cls, config: ClassifierConfig, client: Optional[httpx.AsyncClient] = None
    ) -> "TypeClassifier":
        return cls(config.url, config.api_key, client=client, timeout=config.timeout)

    async def classify(self, grant: AccessGrant) -> ClassificationResult:
        """Ask the service for the type of the object behind ``grant``."""
        logger.info(f"Classifying object via {self.url}")
        response = await self._post(
            {"SasUrl": grant.resource_uri}, headers={"x-api-key": self._api_key}
        )
        if response.status_code >= 400:
            raise ClassificationRejectedError(
                f"Classification rejected with HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            body = response.json()
            label = body["FileTypeName"]
        except (ValueError, KeyError, TypeError) as e:
            raise ClassificationRejectedError(
                f"Malformed classification response: {response.text[:200]!r}"
            ) from e
        if not isinstance(label, str) or not label:
            raise ClassificationRejectedError(f"Invalid file type label: {label!r}")

        logger.info(f"Classification returned file type {label!r}")
        return ClassificationResult(type_label=label)
