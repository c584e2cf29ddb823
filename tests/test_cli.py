import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from comfy_orchestrator.__main__ import build_parser, main
from comfy_orchestrator.jobs import JobTracker


class TestCLI:
    """Test the diagnostics entry point."""

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    @pytest.mark.asyncio
    async def test_models(self, capsys):
        code = await main(["models", "--prompt", "a photo of a fox"])

        data = json.loads(capsys.readouterr().out)
        assert code == 0
        assert data["default"] == "anything"
        assert data["stats"]["total"] == 4
        assert [r["style"] for r in data["recommendations"]] == ["realistic", "furry"]

    @pytest.mark.asyncio
    async def test_validate_valid_file(self, workflow_dir, capsys):
        code = await main(["validate", str(workflow_dir / "anime-basic.json")])

        data = json.loads(capsys.readouterr().out)
        assert code == 0
        assert data["valid"] is True
        assert data["metadata"]["node_count"] == 7

    @pytest.mark.asyncio
    async def test_validate_invalid_graph(self, tmp_path, capsys):
        path = tmp_path / "partial.json"
        path.write_text(json.dumps({"1": {"class_type": "CLIPTextEncode", "inputs": {"text": "hi"}}}))

        code = await main(["validate", str(path)])

        data = json.loads(capsys.readouterr().out)
        assert code == 1
        assert "Missing sampler node" in data["errors"]

    @pytest.mark.asyncio
    async def test_generate_uses_pipeline(self, capsys):
        pipeline = MagicMock()
        result = MagicMock()
        result.prompt_id = "p1"
        result.prepared.deployment.name = "Local ComfyUI"
        result.prepared.model.key = "pony"
        result.prepared.selection.source = "synthesized"
        result.outputs = {}
        result.images = []
        pipeline.generate_from_command = AsyncMock(return_value=result)
        pipeline.close = AsyncMock()

        with patch("comfy_orchestrator.__main__.Settings") as mock_settings, \
             patch("comfy_orchestrator.__main__.create_pipeline", AsyncMock(return_value=pipeline)):
            mock_settings.DEBUG = False
            code = await main(["generate", "a fox --furry", "--no-wait", "--synthesize"])

        assert code == 0
        mock_settings.validate.assert_called_once()
        _, command_text, options = pipeline.generate_from_command.call_args.args
        assert command_text == "a fox --furry"
        assert options.wait is False
        assert options.synthesize_only is True
        pipeline.close.assert_awaited_once()
        assert json.loads(capsys.readouterr().out)["model"] == "pony"

    @pytest.mark.asyncio
    async def test_status_closes_pipeline(self, capsys):
        pipeline = MagicMock()
        pipeline.registry.status_snapshot = AsyncMock(return_value=[])
        pipeline.registry.recommendations.return_value = []
        pipeline.close = AsyncMock()

        with patch("comfy_orchestrator.__main__.Settings") as mock_settings, \
             patch("comfy_orchestrator.__main__.create_pipeline", AsyncMock(return_value=pipeline)):
            mock_settings.DEBUG = False
            code = await main(["status"])

        assert code == 1
        pipeline.close.assert_awaited_once()
        assert json.loads(capsys.readouterr().out) == {"deployments": [], "recommendations": []}

    @pytest.mark.asyncio
    async def test_jobs_recover(self, capsys):
        tracker = JobTracker()
        await tracker.track("p1", prompt="a fox")
        pipeline = MagicMock()
        pipeline.tracker = tracker
        pipeline.recover_jobs = AsyncMock(return_value=[])
        pipeline.close = AsyncMock()

        with patch("comfy_orchestrator.__main__.Settings") as mock_settings, \
             patch("comfy_orchestrator.__main__.create_pipeline", AsyncMock(return_value=pipeline)):
            mock_settings.DEBUG = False
            code = await main(["jobs", "--recover"])

        data = json.loads(capsys.readouterr().out)
        assert code == 0
        pipeline.recover_jobs.assert_awaited_once()
        assert data["recovered"] == []
        assert data["cleaned"] == 0
        assert [job["prompt_id"] for job in data["jobs"]] == ["p1"]
        assert data["stats"]["running"] == 1
        pipeline.close.assert_awaited_once()
