"""Pytest configuration and fixtures for comfy-orchestrator tests."""

import copy
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from comfy_orchestrator.graph import Graph


@pytest.fixture
def api_workflow():
    """Complete text-to-image workflow in API format with arbitrary node ids."""
    return {
        "ckpt-a1": {
            "class_type": "CheckpointLoaderSimple",
            "inputs": {"ckpt_name": "AnythingXL_xl.safetensors"},
            "_meta": {"title": "Load Checkpoint"},
        },
        "907": {
            "class_type": "CLIPTextEncode",
            "inputs": {"text": "lowres, worst quality", "clip": ["ckpt-a1", 1]},
        },
        "x3": {
            "class_type": "CLIPTextEncode",
            "inputs": {"text": "a lighthouse at dusk", "clip": ["ckpt-a1", 1]},
        },
        "latent": {
            "class_type": "EmptyLatentImage",
            "inputs": {"width": 512, "height": 768, "batch_size": 1},
        },
        "s-42": {
            "class_type": "KSampler",
            "inputs": {
                "seed": 12345,
                "steps": 20,
                "cfg": 7.5,
                "sampler_name": "euler",
                "scheduler": "normal",
                "denoise": 1.0,
                "model": ["ckpt-a1", 0],
                "positive": ["x3", 0],
                "negative": ["907", 0],
                "latent_image": ["latent", 0],
            },
        },
        "11": {
            "class_type": "VAEDecode",
            "inputs": {"samples": ["s-42", 0], "vae": ["ckpt-a1", 2]},
        },
        "0": {
            "class_type": "SaveImage",
            "inputs": {"filename_prefix": "test", "images": ["11", 0]},
        },
    }


@pytest.fixture
def template_graph(api_workflow):
    return Graph.from_wire(api_workflow)


@pytest.fixture
def make_history_entry():
    """Factory for ComfyUI /history entries."""
    def _make(workflow, prompt_id="prompt-1", timestamp=None, status_str="success", outputs=None):
        messages = []
        if timestamp is not None:
            messages = [
                ["execution_start", {"prompt_id": prompt_id, "timestamp": timestamp}],
                ["execution_success", {"prompt_id": prompt_id, "timestamp": timestamp + 1500}],
            ]
        return {
            "prompt": [0, prompt_id, copy.deepcopy(workflow), {}, ["0"]],
            "outputs": outputs if outputs is not None else {
                "0": {"images": [{"filename": "out.png", "subfolder": "", "type": "output"}]}
            },
            "status": {"status_str": status_str, "completed": status_str == "success", "messages": messages},
        }
    return _make


@pytest.fixture
def mock_comfy_client():
    """ComfyUI client double with async HTTP methods."""
    client = MagicMock()
    client.base_url = "http://localhost:8188"
    client.fetch_history = AsyncMock(return_value={})
    client.get_history = AsyncMock(return_value={})
    client.get_queue = AsyncMock(return_value={"queue_running": [], "queue_pending": []})
    client.submit_workflow = AsyncMock(return_value="test-prompt-123")
    client.get_file = AsyncMock(return_value=b"png-bytes")
    client.close = AsyncMock()
    return client


@pytest.fixture
def workflow_dir(tmp_path, api_workflow):
    """Directory with two valid templates and one broken file."""
    (tmp_path / "anime-basic.json").write_text(json.dumps(api_workflow))
    realistic = copy.deepcopy(api_workflow)
    realistic["ckpt-a1"]["inputs"]["ckpt_name"] = "realismEngineSDXL_v30VAE.safetensors"
    (tmp_path / "Realistic_Portrait.json").write_text(json.dumps(realistic))
    (tmp_path / "broken.json").write_text("{not json")
    (tmp_path / "notes.txt").write_text("ignored")
    return tmp_path
