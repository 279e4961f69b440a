"""
Etcd health probe.

GETs ``/health`` on a member's client port over HTTPS. The connection goes
through the host's dialer (via a loopback relay), the etcd client
certificate is presented, and the server certificate is not verified.
"""

import asyncio
import ssl
from typing import Awaitable, Callable

import httpx
from pydantic import ValidationError

from kubeferry.config import ClusterConfig
from kubeferry.hosts.dialer import NETWORK_TCP, Dialer, DialerRelay
from kubeferry.hosts.exceptions import ConnectivityError
from kubeferry.models.host import Host
from kubeferry.models.responses import EtcdHealthResponse
from kubeferry.utils.logger import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class HealthProbeError(Exception):
    """One health request could not produce a verdict."""

    pass


async def fetch_health(
    host: Host,
    dial: Dialer,
    ssl_context: ssl.SSLContext | None,
    settings: ClusterConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> EtcdHealthResponse:
    """
    Perform a single health request.

    Raises:
        HealthProbeError: On transport errors or an unreadable body.
    """
    target = f"{host.internal_address}:{settings.ETCD_CLIENT_PORT}"
    try:
        if transport is not None:
            async with httpx.AsyncClient(
                transport=transport, timeout=settings.HEALTH_CHECK_TIMEOUT_SECONDS
            ) as client:
                response = await client.get(f"https://{target}/health")
        else:
            async with DialerRelay(dial, NETWORK_TCP, target) as (relay_ip, relay_port):
                async with httpx.AsyncClient(
                    verify=ssl_context, timeout=settings.HEALTH_CHECK_TIMEOUT_SECONDS
                ) as client:
                    response = await client.get(f"https://{relay_ip}:{relay_port}/health")
    except (httpx.HTTPError, ConnectivityError, OSError) as e:
        raise HealthProbeError(f"Failed to get /health for host [{host.hostname}]: {e}") from e

    # etcd answers 503 with a body when unhealthy, so the body decides
    try:
        return EtcdHealthResponse.model_validate_json(response.content)
    except ValidationError as e:
        raise HealthProbeError(
            f"Failed to parse response of /health for host [{host.hostname}]: {e}"
        ) from e


async def check_etcd_health(
    host: Host,
    dial: Dialer,
    ssl_context: ssl.SSLContext | None,
    settings: ClusterConfig,
    retries: int,
    backoff: float,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Sleep = asyncio.sleep,
) -> bool:
    """
    Ask one etcd member whether it is healthy.

    Makes up to ``retries`` attempts with ``backoff`` seconds between them.
    Running out of attempts is a normal "unhealthy" verdict, not an error.
    """
    logger.debug(f"[etcd] Checking etcd health on host [{host.hostname}]")
    for attempt in range(1, retries + 1):
        if attempt > 1:
            await sleep(backoff)
        try:
            health = await fetch_health(host, dial, ssl_context, settings, transport)
        except HealthProbeError as e:
            logger.debug(f"[etcd] Attempt {attempt}/{retries}: {e}")
            continue
        if health.is_healthy:
            logger.debug(f"[etcd] etcd on host [{host.hostname}] is healthy")
            return True
        logger.debug(
            f"[etcd] Attempt {attempt}/{retries}: host [{host.hostname}] reports "
            f"health={health.health!r} {health.reason}".rstrip()
        )

    logger.warning(f"[etcd] etcd on host [{host.hostname}] is unhealthy after {retries} attempts")
    return False
