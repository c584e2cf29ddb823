"""
Diagnostics entry point.
Usage: python -m comfy_orchestrator {status,workflows,models,validate FILE,generate TEXT,jobs}
"""
import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict

# Configure logging BEFORE any imports that might create loggers
root_logger = logging.getLogger()

for handler in root_logger.handlers[:]:
    root_logger.removeHandler(handler)
    handler.close()


class DuplicateFilter(logging.Filter):
    """Filter to prevent duplicate log messages within a short time window"""
    def __init__(self):
        super().__init__()
        self.last_message_key = None
        self.last_timestamp = None
        self.duplicate_window = 0.1

    def filter(self, record):
        msg_key = (record.levelname, record.getMessage())
        now = record.created
        if (msg_key == self.last_message_key and
                self.last_timestamp is not None and
                abs(now - self.last_timestamp) < self.duplicate_window):
            return False
        self.last_message_key = msg_key
        self.last_timestamp = now
        return True


handler = logging.StreamHandler(sys.stderr)
handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
handler.addFilter(DuplicateFilter())
root_logger.addHandler(handler)
root_logger.setLevel(logging.INFO)

# Suppress noisy libraries
logging.getLogger("httpx").setLevel(logging.CRITICAL)
logging.getLogger("httpcore").setLevel(logging.CRITICAL)
logging.getLogger("websockets").setLevel(logging.WARNING)

# Now import after logging is configured
from .config import Settings  # noqa: E402
from .errors import OrchestratorError  # noqa: E402
from .model_catalog import ModelCatalog  # noqa: E402
from .pipeline import GenerationOptions, create_pipeline  # noqa: E402
from .templates import load_workflow_file  # noqa: E402
from .workflow import validate  # noqa: E402

logger = logging.getLogger(__name__)


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def cmd_status(args) -> int:
    pipeline = await create_pipeline()
    try:
        snapshot = await pipeline.registry.status_snapshot()
        _print({
            "deployments": [s.to_dict() for s in snapshot],
            "recommendations": [
                {"type": r["deployment"].type.value, "reason": r["reason"]}
                for r in pipeline.registry.recommendations(args.use_case)
            ],
        })
        return 0 if any(s.healthy for s in snapshot) else 1
    finally:
        await pipeline.close()


async def cmd_workflows(args) -> int:
    pipeline = await create_pipeline()
    try:
        available = await pipeline.selector.list_available()
        available["stats"] = pipeline.selector.templates.stats()
        available["history_types"] = await pipeline.selector.history.available_types()
        _print(available)
        return 0
    finally:
        await pipeline.close()


async def cmd_models(args) -> int:
    catalog = ModelCatalog(default_key=Settings.DEFAULT_MODEL)
    data = {
        "default": catalog.default.key,
        "models": [asdict(m) for m in catalog.list()],
        "stats": catalog.stats(),
    }
    if args.prompt:
        data["recommendations"] = [
            {"style": r["style"], "confidence": r["confidence"], "matches": r["matches"]}
            for r in catalog.recommend_for_prompt(args.prompt)
        ]
    _print(data)
    return 0


async def cmd_validate(args) -> int:
    graph = load_workflow_file(args.file)
    result = validate(graph)
    _print(asdict(result))
    return 0 if result.valid else 1


async def cmd_generate(args) -> int:
    pipeline = await create_pipeline()
    try:
        options = GenerationOptions(wait=not args.no_wait, synthesize_only=args.synthesize)
        result = await pipeline.generate_from_command(None, args.text, options, progress_callback=logger.info)
        _print({
            "prompt_id": result.prompt_id,
            "deployment": result.prepared.deployment.name,
            "model": result.prepared.model.key,
            "source": result.prepared.selection.source,
            "outputs": result.outputs,
            "images": [image.filename for image in result.images],
        })
        return 0
    finally:
        await pipeline.close()


async def cmd_jobs(args) -> int:
    pipeline = await create_pipeline()
    try:
        data = {}
        if args.recover:
            recovered = await pipeline.recover_jobs()
            data["recovered"] = [
                {"prompt_id": r.job.prompt_id, "images": [image.filename for image in r.images]}
                for r in recovered
            ]
            data["cleaned"] = await pipeline.tracker.cleanup()
        data["jobs"] = [job.to_dict() for job in await pipeline.tracker.jobs()]
        data["stats"] = await pipeline.tracker.stats()
        _print(data)
        return 0
    finally:
        await pipeline.close()


COMMANDS = {
    "status": cmd_status,
    "workflows": cmd_workflows,
    "models": cmd_models,
    "validate": cmd_validate,
    "generate": cmd_generate,
    "jobs": cmd_jobs,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="comfy_orchestrator", description="ComfyUI orchestration diagnostics")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Health-check configured deployments")
    status.add_argument("--use-case", choices=["development", "production", "privacy", "cost", "scale"])
    sub.add_parser("workflows", help="List history and template workflows")
    models = sub.add_parser("models", help="Show the model catalog")
    models.add_argument("--prompt", help="Recommend styles for this prompt")
    validate_cmd = sub.add_parser("validate", help="Validate a workflow JSON file")
    validate_cmd.add_argument("file")
    generate = sub.add_parser("generate", help='Generate from text such as "a fox --furry --fast"')
    generate.add_argument("text")
    generate.add_argument("--no-wait", action="store_true", help="Return after submission")
    generate.add_argument("--synthesize", action="store_true", help="Skip templates and history")
    jobs = sub.add_parser("jobs", help="Show tracked ComfyUI jobs")
    jobs.add_argument("--recover", action="store_true", help="Probe orphaned jobs and collect their images")
    return parser


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.debug or Settings.DEBUG:
        root_logger.setLevel(logging.DEBUG)
    if args.command in ("status", "workflows", "generate", "jobs"):
        Settings.validate()
    return await COMMANDS[args.command](args)


def run():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, exiting gracefully.")
        sys.exit(0)
    except (OrchestratorError, RuntimeError, OSError, ValueError) as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
