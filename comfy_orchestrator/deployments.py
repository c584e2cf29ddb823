"""
Deployment Registry & Selector

Keeps one entry per execution backend type and picks a healthy backend that
satisfies capability requirements. Health is re-checked on every selection.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from .comfyui_client import ComfyUIClient
from .config import DeploymentConfig, Settings
from .errors import DeploymentNotFound, NoDeploymentAvailable
from .health import DeploymentStatus, check_comfyui, check_runpod
from .runpod_client import RunPodClient

logger = logging.getLogger(__name__)


class DeploymentType(Enum):
    LOCAL = "local"
    RUNPOD = "runpod"


@dataclass(frozen=True)
class Capabilities:
    realtime: bool
    websocket: bool
    custom_workflows: bool
    privacy: str  # "complete" | "shared"
    cost: str  # "free" | "paid"
    scalable: bool = False


@dataclass(frozen=True)
class Deployment:
    type: DeploymentType
    name: str
    priority: int
    capabilities: Capabilities
    client: Any = field(default=None, compare=False, repr=False)
    health_check: Optional[Callable[[], Awaitable[bool]]] = field(default=None, compare=False, repr=False)

    async def is_healthy(self) -> bool:
        if self.health_check is None:
            return True
        try:
            return bool(await self.health_check())
        except Exception as e:
            logger.warning(f"Health check for {self.name} raised: {e}")
            return False


@dataclass
class DeploymentPreferences:
    require_realtime: bool = False
    require_privacy: bool = False
    max_cost: str = "any"  # "any" | "free" | "paid"
    preferred_type: Optional[Union[DeploymentType, str]] = None

    def accepts(self, deployment: Deployment) -> bool:
        caps = deployment.capabilities
        if self.require_realtime and not caps.realtime:
            return False
        if self.require_privacy and caps.privacy != "complete":
            return False
        if self.max_cost == "free" and caps.cost != "free":
            return False
        return True


DEFAULT_CAPABILITIES = {
    DeploymentType.LOCAL: Capabilities(
        realtime=True, websocket=True, custom_workflows=True, privacy="complete", cost="free"
    ),
    DeploymentType.RUNPOD: Capabilities(
        realtime=False, websocket=False, custom_workflows=True, privacy="shared", cost="paid", scalable=True
    ),
}

DEPLOYMENT_NAMES = {
    DeploymentType.LOCAL: "Local ComfyUI",
    DeploymentType.RUNPOD: "RunPod Serverless",
}

# use case -> [(predicate, reason)], evaluated in order
USE_CASE_RULES: Dict[str, List[Any]] = {
    "development": [
        (lambda d: d.type == DeploymentType.LOCAL, "Best for development: free, private, real-time"),
        (lambda d: d.type == DeploymentType.RUNPOD, "Fallback for development"),
    ],
    "production": [
        (lambda d: d.type == DeploymentType.RUNPOD, "Best for production: scalable, reliable"),
        (lambda d: d.type == DeploymentType.LOCAL, "Cost-effective for production"),
    ],
    "privacy": [
        (lambda d: d.capabilities.privacy == "complete", "Complete privacy: data never leaves your server"),
    ],
    "cost": [
        (lambda d: d.capabilities.cost == "free", "No usage costs"),
    ],
    "scale": [
        (lambda d: d.capabilities.scalable, "Auto-scaling for high demand"),
    ],
}


def _coerce_type(value: Union[DeploymentType, str]) -> DeploymentType:
    if isinstance(value, DeploymentType):
        return value
    try:
        return DeploymentType(str(value).lower())
    except ValueError:
        raise DeploymentNotFound(str(value)) from None


def build_deployment(config: DeploymentConfig) -> Deployment:
    """Create the client and health probe for one configured backend."""
    deployment_type = _coerce_type(config.type)
    if deployment_type == DeploymentType.LOCAL:
        client = ComfyUIClient(config.base_url or None)
        health_check = lambda: check_comfyui(client)  # noqa: E731
    else:
        client = RunPodClient(config.api_key, config.endpoint_id, config.base_url or None)
        health_check = lambda: check_runpod(client)  # noqa: E731
    return Deployment(
        type=deployment_type,
        name=DEPLOYMENT_NAMES[deployment_type],
        priority=config.priority,
        capabilities=DEFAULT_CAPABILITIES[deployment_type],
        client=client,
        health_check=health_check,
    )


class DeploymentRegistry:
    def __init__(self, factory: Callable[[DeploymentConfig], Deployment] = build_deployment):
        self._factory = factory
        self._deployments: Dict[DeploymentType, Deployment] = {}
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, configs: Optional[Iterable[DeploymentConfig]] = None) -> None:
        """Register enabled deployments once; later calls are no-ops."""
        if self._initialized:
            return
        async with self._lock:
            if self._initialized:
                return
            for config in configs if configs is not None else Settings.deployment_configs():
                if not config.enabled:
                    logger.debug(f"Deployment {config.type} disabled, skipping")
                    continue
                deployment = self._factory(config)
                self._deployments[deployment.type] = deployment
            self._initialized = True
            logger.info(f"Initialized {len(self._deployments)} deployments")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("DeploymentRegistry not initialized")

    def get(self, deployment_type: Union[DeploymentType, str]) -> Deployment:
        self._require_initialized()
        key = _coerce_type(deployment_type)
        if key not in self._deployments:
            raise DeploymentNotFound(key.value)
        return self._deployments[key]

    def list(self) -> List[Deployment]:
        return sorted(self._deployments.values(), key=lambda d: d.priority)

    async def select_best(self, preferences: Optional[DeploymentPreferences] = None) -> Deployment:
        self._require_initialized()
        preferences = preferences or DeploymentPreferences()

        candidates = [d for d in self._deployments.values() if preferences.accepts(d)]
        if not candidates:
            raise NoDeploymentAvailable("No deployments match the requirements")

        results = await asyncio.gather(*(d.is_healthy() for d in candidates))
        healthy = [d for d, ok in zip(candidates, results) if ok]
        for deployment, ok in zip(candidates, results):
            if not ok:
                logger.warning(f"Deployment {deployment.name} is unhealthy")
        if not healthy:
            raise NoDeploymentAvailable("No healthy deployments available")

        if preferences.preferred_type is not None:
            try:
                preferred = _coerce_type(preferences.preferred_type)
            except DeploymentNotFound:
                logger.warning(f"Unknown preferred deployment type: {preferences.preferred_type}")
                preferred = None
            for deployment in healthy:
                if deployment.type == preferred:
                    logger.info(f"Using preferred deployment: {deployment.name}")
                    return deployment
            logger.info(f"Preferred deployment {preferences.preferred_type} unavailable, using priority order")

        selected = min(healthy, key=lambda d: d.priority)
        logger.info(f"Selected deployment: {selected.name}")
        return selected

    async def status_snapshot(self) -> List[DeploymentStatus]:
        deployments = self.list()
        results = await asyncio.gather(*(d.is_healthy() for d in deployments))
        return [
            DeploymentStatus(
                type=d.type.value,
                name=d.name,
                healthy=ok,
                priority=d.priority,
                capabilities=asdict(d.capabilities),
            )
            for d, ok in zip(deployments, results)
        ]

    def recommendations(self, use_case: Optional[str] = None) -> List[Dict[str, Any]]:
        deployments = self.list()
        rules = USE_CASE_RULES.get(use_case or "", [(lambda d: True, "Available deployment option")])
        recommendations = []
        for predicate, reason in rules:
            for deployment in deployments:
                if predicate(deployment):
                    recommendations.append({"deployment": deployment, "reason": reason})
        return recommendations

    async def close(self) -> None:
        for deployment in self._deployments.values():
            close = getattr(deployment.client, "close", None)
            if close is not None:
                await close()

    def reset(self) -> None:
        self._deployments.clear()
        self._initialized = False
