"""Transport factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import SanitizeflowConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport


def get_transport(
    backend: Optional[str] = None, config: Optional[SanitizeflowConfig] = None
) -> BaseTransport:
    """Factory function to get the configured transport."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("SANITIZEFLOW_TRANSPORT")
        or config.transport.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryTransport()
    elif backend == "redis":
        from .redis import RedisTransport

        redis_conf = config.transport.redis
        return RedisTransport(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    elif backend == "rabbitmq":
        from .rabbitmq import RabbitMQTransport

        return RabbitMQTransport(config.transport.rabbitmq_url)
    elif backend == "azure":
        from .azure_queue import AzureQueueTransport

        connection_string = (
            config.transport.azure_connection_string
            or config.storage.connection_string
        )
        if not connection_string:
            raise ValueError("Azure queue transport requires a connection string")
        return AzureQueueTransport(connection_string)
    else:
        raise ValueError(f"Unsupported transport backend: {backend}")


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
