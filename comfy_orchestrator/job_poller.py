import asyncio
import logging
import time
from typing import Dict, Any
from .config import Settings
from .errors import JobTimeoutError, WorkflowExecutionError

logger = logging.getLogger(__name__)


class JobPoller:
    def __init__(
        self,
        comfy_client,
        max_wait_time: float = 300,
        interval: float = 1.0,
        queue_check_interval: float = 30,
    ):
        self.comfy = comfy_client
        self.max_wait_time = max_wait_time
        self.interval = interval
        self._queue_check_interval = queue_check_interval
        self._last_queue_check = 0.0

    async def wait_for_completion(self, prompt_id: str) -> Dict[str, Any]:
        """Poll history until `prompt_id` finishes and return its history entry."""
        start_time = time.time()
        self._last_queue_check = start_time

        while True:
            data = await self.comfy.get_history(prompt_id)
            self._check_for_errors(data)

            status = data.get("status", {})
            outputs = data.get("outputs", {})
            if status.get("completed", False) or (outputs and not status):
                logger.info(f"Prompt {prompt_id} completed ({len(outputs)} output nodes)")
                return data

            now = time.time()
            elapsed = now - start_time
            if elapsed >= self.max_wait_time:
                logger.error(f"Prompt {prompt_id} exceeded max wait time ({self.max_wait_time}s)")
                raise JobTimeoutError(f"Prompt {prompt_id} timed out after {elapsed:.0f}s")

            if now - self._last_queue_check > self._queue_check_interval:
                self._last_queue_check = now
                await self._check_queue_health(prompt_id, elapsed)

            await asyncio.sleep(self.interval)

    async def _check_queue_health(self, prompt_id: str, elapsed: float) -> None:
        """Log where the prompt sits in the ComfyUI queue."""
        get_queue = getattr(self.comfy, "get_queue", None)
        if get_queue is None:
            return
        try:
            queue = await get_queue()
        except Exception as e:
            logger.debug(f"Queue health check failed: {e}")
            return

        running = queue.get("queue_running", [])
        pending = queue.get("queue_pending", [])
        ours_running = any(len(p) > 1 and p[1] == prompt_id for p in running)
        ours_pending = any(len(p) > 1 and p[1] == prompt_id for p in pending)

        if ours_running:
            logger.debug(f"Queue check: prompt is running (elapsed: {elapsed:.0f}s)")
        elif ours_pending and not running:
            logger.warning(
                f"Queue check: prompt {prompt_id[:8]}... is pending but nothing is running "
                f"({len(pending)} pending, elapsed: {elapsed:.0f}s)"
            )
        elif ours_pending:
            logger.info(f"Queue check: {len(running)} running ahead of us, {len(pending)} pending")
        elif not running and not pending:
            logger.warning(f"Queue is empty but prompt {prompt_id} has no history yet (elapsed: {elapsed:.0f}s)")

    def _check_for_errors(self, data: Dict[str, Any]) -> None:
        status = data.get("status", {})
        if status.get("status_str", "") == "error":
            error_msg = self._extract_error_message(status)
            logger.error(f"ComfyUI workflow failed: {error_msg}")
            if Settings.DEBUG:
                logger.debug(f"Full status data: {status}")
            raise WorkflowExecutionError(f"ComfyUI workflow failed: {error_msg}")

    def _extract_error_message(self, status: Dict[str, Any]) -> str:
        for msg in status.get("messages", []):
            if isinstance(msg, list) and len(msg) >= 2 and msg[0] == "execution_error":
                error_data = msg[1] if isinstance(msg[1], dict) else {}
                error_msg = error_data.get("exception_message", "Unknown execution error")
                node_id = error_data.get("node_id", "unknown")
                node_type = error_data.get("node_type", "unknown")
                return f"Node {node_id} ({node_type}): {error_msg}"

        return status.get("exception_message", "Unknown execution error")
