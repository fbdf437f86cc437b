from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from ..config import RebuildConfig
from ..constants import DEFAULT_OUTPUT_PUT_HEADERS
from ..contracts import Permission, ProcessingOutcome, RebuildOutcome, RebuildRequest
from ..errors import GrantIssuanceError
from .base import ServiceClient

logger = logging.getLogger(__name__)


class RebuildCoordinator(ServiceClient):
    """Client for the content disarm and reconstruction service.

    The service reads the source through one grant and writes the rebuilt file
    through another. A call that times out may still have written to the
    destination, which is why destinations are named by content digest.
    """

    service_name = "rebuild service"

    def __init__(
        self,
        url: str,
        key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
        output_put_headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(url, client=client, timeout=timeout)
        self._key = key
        self._output_put_headers = dict(output_put_headers or DEFAULT_OUTPUT_PUT_HEADERS)

    @classmethod
    def from_config(
        cls, config: RebuildConfig, client: Optional[httpx.AsyncClient] = None
    ) -> "RebuildCoordinator":
        return cls(
            config.url,
            config.key,
            client=client,
            timeout=config.timeout,
            output_put_headers=config.output_put_headers,
        )

    async def rebuild(self, request: RebuildRequest) -> RebuildOutcome:
        if not request.source_grant.allows(Permission.READ):
            raise GrantIssuanceError("Rebuild source grant must be readable")
        if not request.destination_grant.allows(Permission.WRITE):
            raise GrantIssuanceError("Rebuild destination grant must be writable")

        logger.info(
            f"Requesting rebuild of {request.type_label!r} file via {self.url}"
        )
        response = await self._post(
            {
                "InputGetUrl": request.source_grant.resource_uri,
                "OutputPutUrl": request.destination_grant.resource_uri,
                "OutputPutUrlRequestHeaders": self._output_put_headers,
            },
            params={"code": self._key},
        )
        logger.info(
            f"Rebuild service answered {response.status_code}: {response.text[:500]!r}"
        )

        if response.status_code >= 400:
            return RebuildOutcome(status=ProcessingOutcome.FAILED)
        return RebuildOutcome(status=ProcessingOutcome.REBUILT)
