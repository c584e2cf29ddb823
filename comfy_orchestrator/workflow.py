"""
Workflow Graph Engine: synthesis, parameter injection, validation and
metadata extraction for ComfyUI node graphs.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import GraphValidationError
from .graph import MODEL_INPUTS, SEED_INPUTS, Edge, Graph, Node, NodeRole
from .utils import DEFAULT_SIZE, generate_seed

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT = "AnythingXL_xl.safetensors"
DEFAULT_STEPS = 30
DEFAULT_CFG = 7.0
DEFAULT_SAMPLER = "dpmpp_2m"
DEFAULT_SCHEDULER = "karras"
DEFAULT_FILENAME_PREFIX = "ComfyOrchestrator"
CLIP_SKIP = -2

# Defaults reported by extract_metadata when the sampler has no literal value
ESTIMATED_STEPS = 20
ESTIMATED_CFG = 7.0

# Phrases that mark an encoder as the negative prompt when sampler edges
# cannot be traced. Known to misfire on prompts that contain them.
NEGATIVE_HINTS = ("worst quality", "bad anatomy")

PLACEHOLDER_MODELS = ("checkpoint_name.safetensors", "model.safetensors", "checkpoint.safetensors")

MODEL_INPUT_NAMES = ("ckpt_name", "unet_name", "lora_name", "vae_name", "control_net_name", "clip_name")

# Inputs followed when walking from a sampler back to its text encoder
# through conditioning nodes (ControlNetApply, ConditioningCombine, ...)
CONDITIONING_INPUTS = ("conditioning", "conditioning_1", "conditioning_to")


@dataclass
class GenerationRequest:
    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    model_filename: Optional[str] = None
    steps: Optional[int] = None
    cfg: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    seed: Optional[int] = None
    sampler_name: Optional[str] = None
    scheduler: Optional[str] = None
    filename_prefix: str = DEFAULT_FILENAME_PREFIX


@dataclass
class GraphMetadata:
    node_count: int = 0
    has_loader: bool = False
    has_sampler: bool = False
    has_decoder: bool = False
    has_text_encoder: bool = False
    has_latent_size: bool = False
    estimated_steps: int = ESTIMATED_STEPS
    estimated_cfg: float = ESTIMATED_CFG
    sampler_name: Optional[str] = None
    model_filename: Optional[str] = None
    required_models: List[str] = field(default_factory=list)
    supported_sizes: List[str] = field(default_factory=list)
    has_controlnet: bool = False
    has_lora: bool = False
    node_types: List[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.has_loader and self.has_sampler and self.has_decoder


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Optional[GraphMetadata] = None

    def raise_for_errors(self) -> None:
        if not self.valid:
            raise GraphValidationError(self.errors, self.warnings)


def synthesize(request: GenerationRequest) -> Graph:
    """Build the canonical text-to-image graph for `request`."""
    seed = generate_seed(request.seed)
    width = request.width or DEFAULT_SIZE
    height = request.height or DEFAULT_SIZE
    steps = request.steps if request.steps is not None else DEFAULT_STEPS
    cfg = request.cfg if request.cfg is not None else DEFAULT_CFG

    nodes = {
        "2": Node(
            "CheckpointLoaderSimple",
            {"ckpt_name": request.model_filename or DEFAULT_CHECKPOINT},
            {"title": "Load Checkpoint"},
        ),
        "9": Node(
            "CLIPSetLastLayer",
            {"stop_at_clip_layer": CLIP_SKIP, "clip": Edge("2", 1)},
            {"title": "CLIP Set Last Layer"},
        ),
        "3": Node(
            "CLIPTextEncode",
            {"text": request.prompt or "", "clip": Edge("9", 0)},
            {"title": "CLIP Text Encode (Positive)"},
        ),
        "4": Node(
            "CLIPTextEncode",
            {"text": request.negative_prompt or "", "clip": Edge("9", 0)},
            {"title": "CLIP Text Encode (Negative)"},
        ),
        "5": Node(
            "EmptyLatentImage",
            {"width": width, "height": height, "batch_size": 1},
            {"title": "Empty Latent Image"},
        ),
        "6": Node(
            "KSampler",
            {
                "seed": seed,
                "steps": steps,
                "cfg": cfg,
                "sampler_name": request.sampler_name or DEFAULT_SAMPLER,
                "scheduler": request.scheduler or DEFAULT_SCHEDULER,
                "denoise": 1.0,
                "model": Edge("2", 0),
                "positive": Edge("3", 0),
                "negative": Edge("4", 0),
                "latent_image": Edge("5", 0),
            },
            {"title": "KSampler"},
        ),
        "7": Node(
            "VAEDecode",
            {"samples": Edge("6", 0), "vae": Edge("2", 2)},
            {"title": "VAE Decode"},
        ),
        "8": Node(
            "SaveImage",
            {"filename_prefix": request.filename_prefix, "images": Edge("7", 0)},
            {"title": "Save Image"},
        ),
    }
    logger.debug(f"Synthesized workflow: {width}x{height}, {steps} steps, cfg {cfg}, seed {seed}")
    return Graph(nodes)


def _trace_encoder(graph: Graph, edge: Optional[Edge], side: str) -> Optional[str]:
    """Follow a sampler conditioning edge upstream to the text encoder that produces it."""
    seen = set()
    while edge is not None and edge.node_id not in seen:
        seen.add(edge.node_id)
        node = graph.get(edge.node_id)
        if node is None:
            return None
        if node.role == NodeRole.TEXT_ENCODE:
            return edge.node_id
        edge = node.edge(side)
        for name in CONDITIONING_INPUTS:
            if edge is not None:
                break
            edge = node.edge(name)
    return None


def _guess_encoders(graph: Graph) -> Tuple[Optional[str], Optional[str]]:
    positive, negative = None, None
    for node_id, node in graph.by_role(NodeRole.TEXT_ENCODE):
        text = str(node.inputs.get("text", "")).lower()
        if negative is None and any(hint in text for hint in NEGATIVE_HINTS):
            negative = node_id
        elif positive is None:
            positive = node_id
    return positive, negative


def find_prompt_encoders(graph: Graph) -> Tuple[Optional[str], Optional[str]]:
    """Return the (positive, negative) encoder node ids for the graph's sampler."""
    positive, negative = None, None
    sampler = graph.first(NodeRole.SAMPLER)
    if sampler is not None:
        _, sampler_node = sampler
        positive = _trace_encoder(graph, sampler_node.edge("positive"), "positive")
        negative = _trace_encoder(graph, sampler_node.edge("negative"), "negative")

    if positive is None or negative is None:
        logger.warning(
            "Could not trace prompt encoders from sampler edges; "
            f"falling back to keyword scan for {NEGATIVE_HINTS}, which can misclassify prompts"
        )
        guessed_positive, guessed_negative = _guess_encoders(graph)
        if positive is None and guessed_positive != negative:
            positive = guessed_positive
        if negative is None and guessed_negative != positive:
            negative = guessed_negative
    return positive, negative


def inject(graph: Graph, params: GenerationRequest) -> Graph:
    """
    Return a copy of `graph` with runtime parameters applied.

    Prompt encoders are located by following the sampler's positive/negative
    edges, so node ids carry no meaning. Sampler settings missing from
    `params` keep the template's values; a missing seed is drawn fresh.
    """
    result = graph.copy()

    loaders = result.by_role(NodeRole.LOADER)
    if len(loaders) > 1:
        logger.warning(f"Workflow has {len(loaders)} loader nodes, updating the first one")
    if loaders and params.model_filename:
        loader_id, loader = loaders[0]
        loader.inputs[MODEL_INPUTS.get(loader.class_type, "ckpt_name")] = params.model_filename
        logger.debug(f"Set model {params.model_filename} on loader node {loader_id}")

    positive_id, negative_id = find_prompt_encoders(result)
    if positive_id is not None and params.prompt is not None:
        result[positive_id].inputs["text"] = params.prompt
    if negative_id is not None and params.negative_prompt is not None:
        result[negative_id].inputs["text"] = params.negative_prompt
    if positive_id is None and params.prompt is not None:
        logger.warning("Workflow has no text encoder node; prompt not applied")

    sampler = result.first(NodeRole.SAMPLER)
    if sampler is not None:
        _, sampler_node = sampler
        inputs = sampler_node.inputs
        for name, value in (
            ("steps", params.steps),
            ("cfg", params.cfg),
            ("sampler_name", params.sampler_name),
            ("scheduler", params.scheduler),
        ):
            if value is not None:
                inputs[name] = value
        inputs[SEED_INPUTS.get(sampler_node.class_type, "seed")] = generate_seed(params.seed)

    if params.width or params.height:
        for _, latent in result.by_role(NodeRole.LATENT_SIZE):
            if params.width:
                latent.inputs["width"] = params.width
            if params.height:
                latent.inputs["height"] = params.height

    return result


def validate(graph: Graph) -> ValidationResult:
    errors: List[str] = []
    warnings: List[str] = []
    metadata = extract_metadata(graph)

    if not metadata.has_loader:
        errors.append("Missing model loader node")
    if not metadata.has_sampler:
        errors.append("Missing sampler node")
    if not metadata.has_decoder:
        errors.append("Missing VAE decode node")

    for sampler_id, sampler in graph.by_role(NodeRole.SAMPLER):
        for side in ("positive", "negative"):
            edge = sampler.edge(side)
            if edge is None:
                errors.append(f"Sampler node {sampler_id} has no {side} conditioning edge")
            elif edge.node_id not in graph:
                errors.append(f"Sampler node {sampler_id} {side} edge points to missing node {edge.node_id}")

    for node_id, node in graph.items():
        for name, edge in node.edges().items():
            if edge.node_id not in graph and node.role != NodeRole.SAMPLER:
                warnings.append(f"Node {node_id} input '{name}' points to missing node {edge.node_id}")

    if not metadata.has_text_encoder:
        warnings.append("No text encoder node found; prompt injection will have no effect")
    if not metadata.has_latent_size:
        warnings.append("No latent size node found; output size cannot be controlled")
    if metadata.model_filename in PLACEHOLDER_MODELS:
        warnings.append(f"Loader uses placeholder model '{metadata.model_filename}'")

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings, metadata=metadata)


def extract_metadata(graph: Graph) -> GraphMetadata:
    metadata = GraphMetadata(node_count=len(graph))
    node_types = set()
    sampler_seen = False

    for node in graph.nodes.values():
        class_type = node.class_type
        role = node.role
        node_types.add(class_type)

        if role == NodeRole.LOADER:
            if not metadata.has_loader:
                model = node.inputs.get(MODEL_INPUTS.get(class_type, "ckpt_name"))
                metadata.model_filename = model if isinstance(model, str) else None
            metadata.has_loader = True
        elif role == NodeRole.SAMPLER:
            metadata.has_sampler = True
            if not sampler_seen:
                sampler_seen = True
                steps = node.inputs.get("steps")
                cfg = node.inputs.get("cfg")
                sampler_name = node.inputs.get("sampler_name")
                if isinstance(steps, int) and not isinstance(steps, bool):
                    metadata.estimated_steps = steps
                if isinstance(cfg, (int, float)) and not isinstance(cfg, bool):
                    metadata.estimated_cfg = float(cfg)
                if isinstance(sampler_name, str):
                    metadata.sampler_name = sampler_name
        elif role == NodeRole.DECODE:
            metadata.has_decoder = True
        elif role == NodeRole.TEXT_ENCODE:
            metadata.has_text_encoder = True
        elif role == NodeRole.LATENT_SIZE:
            metadata.has_latent_size = True
            width, height = node.inputs.get("width"), node.inputs.get("height")
            if isinstance(width, int) and isinstance(height, int):
                size = f"{width}x{height}"
                if size not in metadata.supported_sizes:
                    metadata.supported_sizes.append(size)

        if "ControlNet" in class_type:
            metadata.has_controlnet = True
        if "LoRA" in class_type or "Lora" in class_type:
            metadata.has_lora = True

        for name in MODEL_INPUT_NAMES:
            value = node.inputs.get(name)
            if isinstance(value, str) and value not in metadata.required_models:
                metadata.required_models.append(value)

    metadata.node_types = sorted(node_types)
    return metadata
