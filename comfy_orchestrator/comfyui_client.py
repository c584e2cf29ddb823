import logging
import httpx
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Union
from .config import Settings
from .errors import WorkflowSubmissionError
from .graph import Graph

logger = logging.getLogger(__name__)


@dataclass
class OutputImage:
    filename: str
    subfolder: str
    type: str
    data: bytes


class ComfyUIClient:
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or Settings.COMFYUI_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else Settings.REQUEST_TIMEOUT
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    async def submit_workflow(
        self, workflow: Union[Graph, Dict[str, Any]], client_id: Optional[str] = None
    ) -> str:
        # Raw dicts go through the same validation as templates
        graph = workflow if isinstance(workflow, Graph) else Graph.from_wire(workflow)
        payload: Dict[str, Any] = {"prompt": graph.to_wire()}
        if client_id:
            payload["client_id"] = client_id

        logger.debug(f"Submitting workflow to ComfyUI ({len(graph)} nodes)")
        try:
            resp = await self.client.post("/prompt", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Could not reach ComfyUI at {self.base_url}: {e}")
            raise WorkflowSubmissionError(f"ComfyUI request failed: {e}") from e

        if resp.status_code != 200:
            error_text = resp.text
            logger.error(f"ComfyUI error response (status {resp.status_code}): {error_text}")
            node_errors: Dict[str, Any] = {}
            message = error_text
            try:
                error_json = resp.json()
                node_errors = error_json.get("node_errors") or {}
                error = error_json.get("error")
                if isinstance(error, dict):
                    message = error.get("message") or message
                elif error:
                    message = str(error)
                if node_errors:
                    logger.error(f"Node errors: {node_errors}")
            except ValueError as e:
                logger.debug(f"Failed to parse error JSON: {e}")
            raise WorkflowSubmissionError(
                f"ComfyUI rejected workflow ({resp.status_code}): {message}",
                status_code=resp.status_code,
                node_errors=node_errors,
            )

        response_data = resp.json()
        prompt_id = response_data.get("prompt_id")
        if not prompt_id:
            error_msg = response_data.get("error", "No error details")
            node_errors = response_data.get("node_errors", {})
            raise WorkflowSubmissionError(
                f"No prompt_id in response. Error: {error_msg}, Node errors: {node_errors}",
                status_code=resp.status_code,
                node_errors=node_errors,
            )

        logger.info(f"Workflow submitted successfully. Prompt ID: {prompt_id}")
        return prompt_id

    async def get_history(self, prompt_id: str) -> Dict[str, Any]:
        resp = await self.client.get(f"/history/{prompt_id}")
        resp.raise_for_status()
        return resp.json().get(prompt_id, {})

    async def fetch_history(self, max_items: Optional[int] = None) -> Dict[str, Any]:
        """Full execution history, prompt_id -> entry, oldest first."""
        params = {"max_items": max_items} if max_items else None
        resp = await self.client.get("/history", params=params)
        resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, dict) else {}

    async def get_queue(self) -> Dict[str, Any]:
        resp = await self.client.get("/queue")
        resp.raise_for_status()
        return resp.json()

    async def get_file(self, filename: str, subfolder: str = "", folder_type: str = "output") -> bytes:
        resp = await self.client.get(
            "/view", params={"filename": filename, "subfolder": subfolder, "type": folder_type}
        )
        resp.raise_for_status()
        return resp.content

    async def close(self):
        await self.client.aclose()


async def fetch_output_images(client, outputs: Dict[str, Any]) -> List[OutputImage]:
    """Download every image listed in a history entry's outputs through /view.

    Images that fail to download are logged and left out.
    """
    images: List[OutputImage] = []
    for node_id, node_output in (outputs or {}).items():
        if not isinstance(node_output, dict):
            continue
        for info in node_output.get("images") or []:
            filename = info.get("filename")
            if not filename:
                continue
            subfolder = info.get("subfolder") or ""
            folder_type = info.get("type") or "output"
            try:
                data = await client.get_file(filename, subfolder, folder_type)
            except httpx.HTTPError as e:
                logger.warning(f"Failed to download {filename} from node {node_id}: {e}")
                continue
            images.append(OutputImage(filename, subfolder, folder_type, data))
    logger.debug(f"Downloaded {len(images)} output images")
    return images
