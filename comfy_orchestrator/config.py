"""
ComfyOrchestrator Configuration

Deployments, timeouts and the template directory are declared through
environment variables (optionally loaded from a .env file) and read once at
import time.
"""

import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv  # type: ignore

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class DeploymentConfig:
    """Connection and capability declaration for one execution backend."""
    type: str
    enabled: bool
    priority: int
    base_url: str = ""
    api_key: str = ""
    endpoint_id: str = ""


class Settings:
    COMFYUI_ENABLED = _env_bool("COMFYUI_ENABLED", "true")
    COMFYUI_URL = os.getenv("COMFYUI_URL", "http://127.0.0.1:8188")
    COMFYUI_PRIORITY = int(os.getenv("COMFYUI_PRIORITY", "1"))

    RUNPOD_ENABLED = _env_bool("RUNPOD_ENABLED", "false")
    RUNPOD_API_KEY = os.getenv("RUNPOD_API_KEY", "")
    RUNPOD_ENDPOINT_ID = os.getenv("RUNPOD_ENDPOINT_ID", "")
    RUNPOD_API_URL = os.getenv("RUNPOD_API_URL", "https://api.runpod.ai/v2")
    RUNPOD_PRIORITY = int(os.getenv("RUNPOD_PRIORITY", "2"))

    HEALTH_CHECK_TIMEOUT = float(os.getenv("HEALTH_CHECK_TIMEOUT", "5"))
    REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "300"))
    HISTORY_MAX_ITEMS = int(os.getenv("HISTORY_MAX_ITEMS", "200"))

    # Empty keeps tracked jobs in memory only
    JOB_STORE_PATH = os.getenv("JOB_STORE_PATH", "")
    JOB_ORPHAN_AGE = float(os.getenv("JOB_ORPHAN_AGE", "300"))

    DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", "anything")
    DEBUG = _env_bool("DEBUG", "false")
    # Default template path relative to this package: <repo>/workflows
    WORKFLOW_DIR = os.getenv(
        "WORKFLOW_DIR",
        os.path.join(os.path.dirname(os.path.dirname(__file__)), "workflows"),
    )

    @classmethod
    def validate(cls):
        if not (cls.COMFYUI_ENABLED or cls.RUNPOD_ENABLED):
            raise RuntimeError("At least one of COMFYUI_ENABLED or RUNPOD_ENABLED must be true.")
        if cls.RUNPOD_ENABLED and not (cls.RUNPOD_API_KEY and cls.RUNPOD_ENDPOINT_ID):
            raise RuntimeError("RUNPOD_API_KEY and RUNPOD_ENDPOINT_ID are required when RUNPOD_ENABLED is true.")

    @classmethod
    def deployment_configs(cls) -> List[DeploymentConfig]:
        """Build the deployment declarations consumed by DeploymentRegistry.initialize."""
        return [
            DeploymentConfig(
                type="local",
                enabled=cls.COMFYUI_ENABLED,
                priority=cls.COMFYUI_PRIORITY,
                base_url=cls.COMFYUI_URL,
            ),
            DeploymentConfig(
                type="runpod",
                enabled=cls.RUNPOD_ENABLED,
                priority=cls.RUNPOD_PRIORITY,
                base_url=cls.RUNPOD_API_URL,
                api_key=cls.RUNPOD_API_KEY,
                endpoint_id=cls.RUNPOD_ENDPOINT_ID,
            ),
        ]

