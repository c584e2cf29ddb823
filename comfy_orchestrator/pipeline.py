"""
Generation pipeline

deployment selection -> model resolution -> graph sourcing -> parameter
injection -> submission -> (optional) wait for completion.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from .comfyui_client import ComfyUIClient, OutputImage, fetch_output_images
from .config import Settings
from .deployments import Deployment, DeploymentPreferences, DeploymentRegistry, DeploymentType
from .errors import NoWorkflowFound, OrchestratorError
from .graph import Graph
from .history import HistoryDiscovery
from .jobs import JobTracker, JsonFileJobStore, RecoveredJob
from .job_poller import JobPoller
from .model_catalog import ModelCatalog, ModelDescriptor, parse_selection_options
from .progress import ProgressListener
from .selector import SYNTHESIZED, Selection, WorkflowQuery, WorkflowSelector
from .templates import TemplateStore
from .workflow import GenerationRequest, extract_metadata, inject, synthesize, validate

logger = logging.getLogger(__name__)

# Graph sources tried in order by prepare()
PIPELINE_STRATEGIES = ("selector", "synthesize")


@dataclass
class GenerationOptions:
    model: Union[str, ModelDescriptor, None] = None
    negative_prompt: Optional[str] = None
    steps: Optional[int] = None
    cfg: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    seed: Optional[int] = None
    sampler_name: Optional[str] = None
    scheduler: Optional[str] = None
    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    workflow_type: Optional[str] = None
    deployment: DeploymentPreferences = field(default_factory=DeploymentPreferences)
    allow_synthesis: bool = True
    synthesize_only: bool = False
    validate: bool = True
    wait: bool = True
    fetch_images: bool = True
    max_wait_time: float = 300


@dataclass
class PreparedGeneration:
    deployment: Deployment
    model: ModelDescriptor
    selection: Selection
    graph: Graph
    request: GenerationRequest


@dataclass
class GenerationResult:
    prompt_id: str
    prepared: PreparedGeneration
    outputs: Dict[str, Any] = field(default_factory=dict)
    images: List[OutputImage] = field(default_factory=list)


class GenerationPipeline:
    def __init__(
        self,
        registry: DeploymentRegistry,
        catalog: ModelCatalog,
        selector: WorkflowSelector,
        tracker: Optional[JobTracker] = None,
    ):
        self.registry = registry
        self.catalog = catalog
        self.selector = selector
        self.tracker = tracker

    async def close(self) -> None:
        await self.registry.close()
        history_client = self.selector.history.client
        if all(d.client is not history_client for d in self.registry.list()):
            await history_client.close()

    def _resolve_model(self, options: GenerationOptions) -> ModelDescriptor:
        if isinstance(options.model, ModelDescriptor):
            return options.model
        return self.catalog.resolve(options.model)

    def _build_request(self, prompt: str, model: ModelDescriptor, options: GenerationOptions) -> GenerationRequest:
        defaults = model.default_settings
        return GenerationRequest(
            prompt=prompt,
            negative_prompt=options.negative_prompt,
            model_filename=model.filename,
            steps=options.steps if options.steps is not None else defaults.steps,
            cfg=options.cfg if options.cfg is not None else defaults.cfg,
            width=options.width,
            height=options.height,
            seed=options.seed,
            sampler_name=options.sampler_name or defaults.sampler_name,
            scheduler=options.scheduler or defaults.scheduler,
        )

    def _selector_queries(self, model: ModelDescriptor, options: GenerationOptions) -> List[WorkflowQuery]:
        workflow_type = options.workflow_type or model.style
        if options.workflow_id:
            return [WorkflowQuery(method="id", workflow_id=options.workflow_id)]
        if options.workflow_name:
            return [WorkflowQuery(method="name", workflow_name=options.workflow_name)]
        queries = []
        if model.workflow:
            queries.append(WorkflowQuery(method="name", workflow_name=model.workflow))
        queries.append(WorkflowQuery(method="auto", type=workflow_type))
        return queries

    async def _from_selector(self, model: ModelDescriptor, options: GenerationOptions, request: GenerationRequest) -> Selection:
        if options.synthesize_only:
            raise NoWorkflowFound("Selector skipped, synthesis requested")
        last_error: Optional[Exception] = None
        for query in self._selector_queries(model, options):
            try:
                return await self.selector.select(query)
            except OrchestratorError as e:
                logger.debug(f"Selector query {query.method} failed: {e}")
                last_error = e
        raise NoWorkflowFound("Workflow selector found nothing") from last_error

    async def _from_synthesis(self, model: ModelDescriptor, options: GenerationOptions, request: GenerationRequest) -> Selection:
        if not options.allow_synthesis:
            raise NoWorkflowFound("Synthesis disabled")
        graph = synthesize(request)
        return Selection(SYNTHESIZED, graph, extract_metadata(graph))

    async def prepare(self, prompt: str, options: Optional[GenerationOptions] = None) -> PreparedGeneration:
        options = options or GenerationOptions()
        deployment = await self.registry.select_best(options.deployment)
        model = self._resolve_model(options)
        request = self._build_request(prompt, model, options)

        strategies = {"selector": self._from_selector, "synthesize": self._from_synthesis}
        selection: Optional[Selection] = None
        last_error: Optional[Exception] = None
        for name in PIPELINE_STRATEGIES:
            try:
                selection = await strategies[name](model, options, request)
                break
            except OrchestratorError as e:
                logger.warning(f"Graph source {name} failed: {e}")
                last_error = e
        if selection is None:
            raise NoWorkflowFound("No workflow could be selected or synthesized") from last_error

        # Synthesized graphs are built from the request already
        graph = selection.graph if selection.source == SYNTHESIZED else inject(selection.graph, request)
        logger.info(
            f"Prepared generation: deployment={deployment.name}, model={model.key}, "
            f"source={selection.source}, nodes={len(graph)}"
        )
        return PreparedGeneration(deployment, model, selection, graph, request)

    async def generate(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
        progress_callback: Optional[Callable[[str], Any]] = None,
    ) -> GenerationResult:
        options = options or GenerationOptions()
        prepared = await self.prepare(prompt, options)

        if options.validate:
            result = validate(prepared.graph)
            for warning in result.warnings:
                logger.warning(f"Workflow warning: {warning}")
            result.raise_for_errors()

        deployment = prepared.deployment
        client = deployment.client
        client_id = uuid.uuid4().hex
        prompt_id = await client.submit_workflow(prepared.graph, client_id)

        if deployment.type == DeploymentType.RUNPOD:
            if not options.wait:
                return GenerationResult(prompt_id, prepared)
            outputs = await client.wait_for_job(prompt_id, max_wait_time=options.max_wait_time)
            return GenerationResult(prompt_id, prepared, outputs)

        # ComfyUI jobs stay tracked until their images are collected, so an
        # unwaited or interrupted job can be picked up by recover_jobs()
        if self.tracker is not None:
            await self.tracker.track(
                prompt_id, prompt=prepared.request.prompt, model=prepared.model.filename, deployment=deployment.name
            )
        if not options.wait:
            return GenerationResult(prompt_id, prepared)

        try:
            entry = await self._wait_local(deployment, prompt_id, client_id, options, progress_callback)
            outputs = entry.get("outputs", {})
            images = await fetch_output_images(client, outputs) if options.fetch_images else []
        except (OrchestratorError, httpx.HTTPError) as e:
            if self.tracker is not None:
                await self.tracker.fail(prompt_id, str(e))
            raise
        if self.tracker is not None:
            await self.tracker.complete(prompt_id)
        return GenerationResult(prompt_id, prepared, outputs, images)

    async def _wait_local(self, deployment, prompt_id, client_id, options, progress_callback) -> Dict[str, Any]:
        client = deployment.client
        listener_task = None
        if progress_callback is not None and deployment.capabilities.websocket:
            listener = ProgressListener(client.base_url, client_id, progress_callback)
            listener_task = asyncio.create_task(listener.listen(prompt_id))
        try:
            return await JobPoller(client, max_wait_time=options.max_wait_time).wait_for_completion(prompt_id)
        finally:
            if listener_task is not None:
                listener_task.cancel()
                try:
                    await listener_task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    # Progress reporting never decides the outcome of a job
                    logger.warning(f"Progress listener for {prompt_id} failed: {e}")

    async def recover_jobs(self) -> List[RecoveredJob]:
        """Collect results of tracked ComfyUI jobs that were never waited for."""
        if self.tracker is None:
            return []
        return await self.tracker.recover_orphaned(self.selector.history.client)

    async def generate_from_command(
        self,
        prompt: Optional[str],
        command_text: str,
        options: Optional[GenerationOptions] = None,
        progress_callback: Optional[Callable[[str], Any]] = None,
    ) -> GenerationResult:
        """Generate from chat-style text such as "a fox in snow --furry --fast --ar 16:9"."""
        options = options or GenerationOptions()
        parsed = parse_selection_options(command_text)
        model = self.catalog.apply_options(parsed)
        options = replace(
            options,
            model=model,
            width=parsed.width or options.width,
            height=parsed.height or options.height,
            seed=parsed.seed if parsed.seed is not None else options.seed,
            workflow_name=parsed.workflow or options.workflow_name,
        )
        return await self.generate(prompt or parsed.text, options, progress_callback)


async def create_pipeline(configs=None, workflow_dir: Optional[str] = None) -> GenerationPipeline:
    """Build the registry, catalog, template store and selector from Settings."""
    registry = DeploymentRegistry()
    await registry.initialize(configs)
    try:
        history_client = registry.get(DeploymentType.LOCAL).client
    except OrchestratorError:
        # History lives on a ComfyUI server even when only RunPod executes
        history_client = ComfyUIClient(Settings.COMFYUI_URL)

    templates = TemplateStore(workflow_dir)
    templates.load()
    selector = WorkflowSelector(HistoryDiscovery(history_client), templates)
    store = JsonFileJobStore(Settings.JOB_STORE_PATH) if Settings.JOB_STORE_PATH else None
    return GenerationPipeline(
        registry, ModelCatalog(default_key=Settings.DEFAULT_MODEL), selector, JobTracker(store)
    )
