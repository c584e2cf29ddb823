import asyncio
import logging
import time
import httpx
from typing import Dict, Any, Optional, Union
from .config import Settings
from .errors import JobTimeoutError, WorkflowExecutionError, WorkflowSubmissionError
from .graph import Graph

logger = logging.getLogger(__name__)

FAILED_STATES = ("FAILED", "CANCELLED", "TIMED_OUT")


class RunPodClient:
    """Client for a RunPod serverless endpoint running a ComfyUI worker."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else Settings.RUNPOD_API_KEY
        self.endpoint_id = endpoint_id if endpoint_id is not None else Settings.RUNPOD_ENDPOINT_ID
        self.base_url = (base_url or Settings.RUNPOD_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else Settings.REQUEST_TIMEOUT
        self.client = httpx.AsyncClient(
            base_url=f"{self.base_url}/{self.endpoint_id}",
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.endpoint_id)

    async def submit_workflow(
        self, workflow: Union[Graph, Dict[str, Any]], client_id: Optional[str] = None
    ) -> str:
        graph = workflow if isinstance(workflow, Graph) else Graph.from_wire(workflow)
        try:
            resp = await self.client.post("/run", json={"input": {"workflow": graph.to_wire()}})
        except httpx.HTTPError as e:
            logger.error(f"Could not reach RunPod endpoint {self.endpoint_id}: {e}")
            raise WorkflowSubmissionError(f"RunPod request failed: {e}") from e

        if resp.status_code != 200:
            logger.error(f"RunPod error response (status {resp.status_code}): {resp.text}")
            raise WorkflowSubmissionError(
                f"RunPod rejected workflow ({resp.status_code}): {resp.text}",
                status_code=resp.status_code,
            )

        job_id = resp.json().get("id")
        if not job_id:
            raise WorkflowSubmissionError(f"No job id in RunPod response: {resp.text}", status_code=resp.status_code)
        logger.info(f"Workflow submitted to RunPod. Job ID: {job_id}")
        return job_id

    async def get_status(self, job_id: str) -> Dict[str, Any]:
        resp = await self.client.get(f"/status/{job_id}")
        resp.raise_for_status()
        return resp.json()

    async def health(self) -> Dict[str, Any]:
        resp = await self.client.get("/health")
        resp.raise_for_status()
        return resp.json()

    async def wait_for_job(self, job_id: str, max_wait_time: float = 300, interval: float = 2.0) -> Dict[str, Any]:
        """Poll job status until it completes and return its output."""
        start_time = time.time()
        while True:
            data = await self.get_status(job_id)
            state = data.get("status")
            if state == "COMPLETED":
                return data.get("output") or {}
            if state in FAILED_STATES:
                raise WorkflowExecutionError(f"RunPod job {job_id} {state.lower()}: {data.get('error', 'no details')}")

            elapsed = time.time() - start_time
            if elapsed >= max_wait_time:
                raise JobTimeoutError(f"RunPod job {job_id} timed out after {elapsed:.0f}s (last status {state})")
            await asyncio.sleep(interval)

    async def close(self):
        await self.client.aclose()
