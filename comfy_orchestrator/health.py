"""
Health probes for execution backends.

Every probe is a bounded, side-effect-free boolean check: network errors and
timeouts mean "unhealthy" and never propagate to the caller.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .config import Settings

logger = logging.getLogger(__name__)


@dataclass
class DeploymentStatus:
    """Diagnostic view of one deployment."""
    type: str
    name: str
    healthy: bool
    priority: int
    capabilities: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "type": self.type,
            "name": self.name,
            "healthy": self.healthy,
            "priority": self.priority,
            "capabilities": self.capabilities,
        }
        if self.error:
            data["error"] = self.error
        return data


async def probe(check: Callable[[], Awaitable[Any]], name: str, timeout: Optional[float] = None) -> bool:
    timeout = timeout if timeout is not None else Settings.HEALTH_CHECK_TIMEOUT
    try:
        await asyncio.wait_for(check(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        logger.debug(f"{name} health check timed out after {timeout}s")
    except (httpx.HTTPError, OSError, ValueError) as e:
        logger.debug(f"{name} health check failed: {e}")
    return False


async def check_comfyui(client, timeout: Optional[float] = None) -> bool:
    """Local ComfyUI is healthy when GET /queue answers."""
    return await probe(client.get_queue, f"ComfyUI ({client.base_url})", timeout)


async def check_runpod(client, timeout: Optional[float] = None) -> bool:
    """RunPod needs credentials and an answering /health endpoint."""
    if not client.configured:
        logger.debug("RunPod health check failed: api key or endpoint id missing")
        return False
    return await probe(client.health, f"RunPod ({client.endpoint_id})", timeout)
