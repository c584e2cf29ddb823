import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from comfy_orchestrator.progress import ProgressListener, format_message, is_finished, websocket_url


class FakeWebSocket:
    """Minimal async context manager / iterator standing in for a websockets connection."""

    def __init__(self, messages):
        self.messages = list(messages)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.messages:
            raise StopAsyncIteration
        return self.messages.pop(0)


class TestFormatMessage:
    @pytest.mark.parametrize("data,expected", [
        ({"type": "execution_start", "data": {"prompt_id": "p"}}, "Execution started"),
        ({"type": "progress", "data": {"value": 5, "max": 20}}, "Progress: 25% (5/20)"),
        ({"type": "executing", "data": {"node": "6"}}, "Executing node 6"),
        ({"type": "executing", "data": {"node": None}}, "Workflow execution complete"),
        ({"type": "status", "data": {"status": {"exec_info": {"queue_remaining": 3}}}}, "Queued: 2 jobs ahead"),
        ({"type": "status", "data": {"status": {"exec_info": {"queue_remaining": 1}}}}, None),
        ({"type": "execution_interrupted", "data": {}}, "Execution interrupted"),
        ({"type": "executed", "data": {"node": "9"}}, None),
    ])
    def test_messages(self, data, expected):
        assert format_message(data) == expected

    def test_execution_error(self):
        data = {
            "type": "execution_error",
            "data": {"node_id": "6", "node_type": "KSampler", "exception_message": "boom"},
        }
        assert format_message(data) == "Error in node 6 (KSampler): boom"


class TestIsFinished:
    def test_executing_none_finishes(self):
        assert is_finished({"type": "executing", "data": {"node": None, "prompt_id": "p1"}}, "p1")

    def test_other_prompt_ignored(self):
        assert not is_finished({"type": "execution_success", "data": {"prompt_id": "other"}}, "p1")

    def test_running_node_not_finished(self):
        assert not is_finished({"type": "executing", "data": {"node": "3"}}, "p1")

    @pytest.mark.parametrize("msg_type", ["execution_success", "execution_error", "execution_interrupted"])
    def test_terminal_events(self, msg_type):
        assert is_finished({"type": msg_type, "data": {"prompt_id": "p1"}}, "p1")


class TestProgressListener:
    def test_websocket_url(self):
        assert websocket_url("https://comfy.test/", "abc") == "wss://comfy.test/ws?clientId=abc"
        assert websocket_url("http://127.0.0.1:8188", "abc") == "ws://127.0.0.1:8188/ws?clientId=abc"

    @pytest.mark.asyncio
    async def test_listen_forwards_progress(self):
        messages = [
            b"\x00\x01preview",
            "not json",
            json.dumps({"type": "progress", "data": {"value": 1, "max": 4, "prompt_id": "p1"}}),
            json.dumps({"type": "executing", "data": {"node": None, "prompt_id": "p1"}}),
            json.dumps({"type": "progress", "data": {"value": 4, "max": 4, "prompt_id": "p1"}}),
        ]
        callback = MagicMock()
        listener = ProgressListener("http://comfy.test", "client-1", callback)

        with patch("comfy_orchestrator.progress.websockets.connect", return_value=FakeWebSocket(messages)) as mock_connect:
            await listener.listen("p1")

        mock_connect.assert_called_once_with("ws://comfy.test/ws?clientId=client-1")
        assert [c.args[0] for c in callback.call_args_list] == [
            "Progress: 25% (1/4)",
            "Workflow execution complete",
        ]

    @pytest.mark.asyncio
    async def test_listen_async_callback(self):
        messages = [json.dumps({"type": "execution_start", "data": {"prompt_id": "p1"}})]
        callback = AsyncMock()
        listener = ProgressListener("http://comfy.test", "client-1", callback)

        with patch("comfy_orchestrator.progress.websockets.connect", return_value=FakeWebSocket(messages)):
            await listener.listen("p1")

        callback.assert_awaited_once_with("Execution started")

    @pytest.mark.asyncio
    async def test_connection_error_is_logged(self, caplog):
        listener = ProgressListener("http://comfy.test", "client-1", MagicMock())

        with patch("comfy_orchestrator.progress.websockets.connect", side_effect=OSError("refused")):
            await listener.listen("p1")

        assert "WebSocket connection failed" in caplog.text
