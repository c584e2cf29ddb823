import json
import logging
from typing import Any, Callable, Dict, Optional

import websockets

from .config import Settings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], Any]


def websocket_url(base_url: str, client_id: str) -> str:
    # Convert http:// to ws:// and https:// to wss://
    ws_url = base_url.rstrip("/").replace("http://", "ws://").replace("https://", "wss://")
    return f"{ws_url}/ws?clientId={client_id}"


def format_message(data: Dict[str, Any]) -> Optional[str]:
    """Render one ComfyUI websocket event as a progress line, or None if it is not user facing."""
    msg_type = data.get("type")
    payload = data.get("data") or {}

    if msg_type == "execution_start":
        return "Execution started"
    if msg_type == "status":
        queue_remaining = payload.get("status", {}).get("exec_info", {}).get("queue_remaining", 0)
        if queue_remaining > 1:
            return f"Queued: {queue_remaining - 1} jobs ahead"
        return None
    if msg_type == "progress":
        current_step = payload.get("value", 0)
        total_steps = payload.get("max", 1)
        if total_steps > 0:
            percentage = (current_step / total_steps) * 100
            return f"Progress: {percentage:.0f}% ({current_step}/{total_steps})"
        return None
    if msg_type == "executing":
        node_id = payload.get("node")
        return f"Executing node {node_id}" if node_id else "Workflow execution complete"
    if msg_type == "execution_error":
        error_msg = payload.get("exception_message", "Unknown error")
        return f"Error in node {payload.get('node_id', 'unknown')} ({payload.get('node_type', 'unknown')}): {error_msg}"
    if msg_type == "execution_interrupted":
        return "Execution interrupted"
    return None


def is_finished(data: Dict[str, Any], prompt_id: Optional[str] = None) -> bool:
    msg_type = data.get("type")
    payload = data.get("data") or {}
    if prompt_id and payload.get("prompt_id") not in (None, prompt_id):
        return False
    if msg_type == "executing":
        return payload.get("node") is None
    return msg_type in ("execution_success", "execution_error", "execution_interrupted")


class ProgressListener:
    """Forwards ComfyUI websocket progress events to a callback as text."""

    def __init__(self, base_url: Optional[str], client_id: str, callback: ProgressCallback):
        self.url = websocket_url(base_url or Settings.COMFYUI_URL, client_id)
        self.callback = callback

    async def _emit(self, text: str) -> None:
        result = self.callback(text)
        if hasattr(result, "__await__"):
            await result

    async def listen(self, prompt_id: Optional[str] = None) -> None:
        """Stream events until the prompt finishes or the connection closes."""
        try:
            logger.debug(f"Connecting to ComfyUI WebSocket: {self.url}")
            async with websockets.connect(self.url) as websocket:
                async for message in websocket:
                    if isinstance(message, bytes):
                        # Binary frames carry preview images
                        continue
                    try:
                        data = json.loads(message)
                    except json.JSONDecodeError:
                        logger.debug(f"Non-JSON WebSocket message: {message[:100]}")
                        continue

                    text = format_message(data)
                    if text:
                        logger.debug(text)
                        await self._emit(text)
                    if is_finished(data, prompt_id):
                        return
        except (OSError, websockets.exceptions.WebSocketException) as e:
            # Progress is best effort; polling still decides the outcome
            logger.warning(f"WebSocket connection failed: {e}")
            if Settings.DEBUG:
                logger.debug("WebSocket error", exc_info=True)
