"""
Model Catalog

Maps logical model keys, checkpoint filenames and command-line style flags
(--anime, --fast, --model realism, ...) to concrete model descriptors with
generation defaults.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from .utils import parse_aspect_ratio

logger = logging.getLogger(__name__)


class SelectionFlag(Enum):
    FAST = "fast"
    QUALITY = "quality"
    ANIME = "anime"
    REALISTIC = "realistic"
    FURRY = "furry"
    ARTISTIC = "artistic"
    AVATAR = "avatar"


STYLE_FLAGS = (SelectionFlag.ANIME, SelectionFlag.REALISTIC, SelectionFlag.FURRY, SelectionFlag.ARTISTIC)

FLAG_ALIASES: Dict[str, SelectionFlag] = {
    "--fast": SelectionFlag.FAST,
    "--quick": SelectionFlag.FAST,
    "--quality": SelectionFlag.QUALITY,
    "--hq": SelectionFlag.QUALITY,
    "--high-quality": SelectionFlag.QUALITY,
    "--anime": SelectionFlag.ANIME,
    "--manga": SelectionFlag.ANIME,
    "--2d": SelectionFlag.ANIME,
    "--realistic": SelectionFlag.REALISTIC,
    "--photorealistic": SelectionFlag.REALISTIC,
    "--3d": SelectionFlag.REALISTIC,
    "--furry": SelectionFlag.FURRY,
    "--anthropomorphic": SelectionFlag.FURRY,
    "--pony": SelectionFlag.FURRY,
    "--artistic": SelectionFlag.ARTISTIC,
    "--creative": SelectionFlag.ARTISTIC,
    "--avatar": SelectionFlag.AVATAR,
}

# Flags that pin an exact model; these win over style flags
NAMED_MODEL_FLAGS = {
    "--anything": "anything",
    "--realism": "realism",
    "--pony": "pony",
    "--deliberate": "deliberate",
}

VALUE_OPTIONS = ("--model", "--size", "--ar", "--seed")

# (steps, cfg) overrides applied in this order, so QUALITY wins over FAST
QUALITY_OVERRIDES: List[Tuple[SelectionFlag, Dict[str, Any]]] = [
    (SelectionFlag.FAST, {"steps": 15, "cfg": 6.0}),
    (SelectionFlag.QUALITY, {"steps": 30, "cfg": 8.0}),
]

AVATAR_WORKFLOW = "anime-avatar-generation"

STYLE_INDICATORS: Dict[str, List[str]] = {
    "anime": ["anime", "manga", "2d", "kawaii", "chibi", "waifu", "girl", "boy"],
    "realistic": ["realistic", "photo", "portrait", "human", "person", "real"],
    "furry": ["furry", "anthro", "wolf", "fox", "cat", "dog", "pony", "dragon"],
    "artistic": ["art", "painting", "drawing", "sketch", "creative", "abstract"],
}


@dataclass(frozen=True)
class GenerationDefaults:
    steps: int
    cfg: float
    sampler_name: str
    scheduler: str = "karras"


@dataclass(frozen=True)
class ModelDescriptor:
    filename: str
    key: str
    name: str
    style: str
    default_settings: GenerationDefaults
    description: str = ""
    workflow: Optional[str] = None
    speed: str = "medium"
    quality: str = "high"
    flags: Tuple[str, ...] = ()


@dataclass
class SelectionOptions:
    """Typed result of parsing free-form command text."""
    flags: Set[SelectionFlag] = field(default_factory=set)
    model_key: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    seed: Optional[int] = None
    workflow: Optional[str] = None
    text: str = ""
    unknown: List[str] = field(default_factory=list)

    @property
    def style_flags(self) -> List[SelectionFlag]:
        return [flag for flag in STYLE_FLAGS if flag in self.flags]


DEFAULT_MODELS: Tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        filename="AnythingXL_xl.safetensors",
        key="anything",
        name="Anything XL",
        style="anime",
        default_settings=GenerationDefaults(steps=25, cfg=8.0, sampler_name="dpmpp_2m"),
        description="High-quality anime/manga style model",
        workflow="anime-basic",
        flags=("anime", "manga", "2d", "stylized", "nsfw"),
    ),
    ModelDescriptor(
        filename="realismEngineSDXL_v30VAE.safetensors",
        key="realism",
        name="Realism Engine SDXL",
        style="realistic",
        default_settings=GenerationDefaults(steps=30, cfg=9.0, sampler_name="dpmpp_2m"),
        description="Photorealistic image generation",
        workflow="realistic-portrait",
        speed="slow",
        flags=("realistic", "photorealistic", "3d", "nsfw"),
    ),
    ModelDescriptor(
        filename="ponyDiffusionV6XL_v6StartWithThisOne.safetensors",
        key="pony",
        name="Pony Diffusion V6 XL",
        style="furry",
        default_settings=GenerationDefaults(steps=25, cfg=7.5, sampler_name="dpmpp_2m"),
        description="Anthropomorphic and furry art generation",
        flags=("furry", "anthropomorphic", "pony", "nsfw"),
    ),
    ModelDescriptor(
        filename="deliberate_v2.safetensors",
        key="deliberate",
        name="Deliberate V2",
        style="artistic",
        default_settings=GenerationDefaults(
            steps=20, cfg=7.0, sampler_name="euler_ancestral", scheduler="normal"
        ),
        description="Versatile artistic style model",
        speed="fast",
        flags=("artistic", "creative", "versatile", "nsfw"),
    ),
)


def _int_or_none(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def _parse_size(value: str) -> Tuple[Optional[int], Optional[int]]:
    parts = value.lower().split("x")
    if len(parts) != 2:
        return None, None
    width, height = _int_or_none(parts[0]), _int_or_none(parts[1])
    if not width or not height or width <= 0 or height <= 0:
        return None, None
    return width, height


def parse_selection_options(text: Optional[str]) -> SelectionOptions:
    """
    Parse command text such as "a cat --anime --fast --size 832x1216".

    Flags are matched case-insensitively, both "--opt value" and "--opt=value"
    forms are accepted, and anything that is not an option is kept as prompt
    text. Unknown "--" tokens are collected but never raise.
    """
    options = SelectionOptions()
    words: List[str] = []
    tokens = (text or "").split()
    i = 0
    while i < len(tokens):
        token = tokens[i]
        lowered = token.lower()
        if not lowered.startswith("--"):
            words.append(token)
            i += 1
            continue

        name, _, inline_value = lowered.partition("=")
        if name in VALUE_OPTIONS:
            value = inline_value
            if not value and i + 1 < len(tokens):
                i += 1
                value = tokens[i]
            if name == "--model":
                options.model_key = value.lower() or None
            elif name == "--size":
                options.width, options.height = _parse_size(value)
            elif name == "--ar":
                options.width, options.height = parse_aspect_ratio(value)
            elif name == "--seed":
                options.seed = _int_or_none(value)
            i += 1
            continue

        if name in NAMED_MODEL_FLAGS and options.model_key is None:
            options.model_key = NAMED_MODEL_FLAGS[name]
        if name in FLAG_ALIASES:
            options.flags.add(FLAG_ALIASES[name])
        elif name not in NAMED_MODEL_FLAGS:
            options.unknown.append(token)
        i += 1

    if SelectionFlag.AVATAR in options.flags:
        options.workflow = AVATAR_WORKFLOW
    options.text = " ".join(words)
    return options


class ModelCatalog:
    """Registry of model presets, keyed by checkpoint filename."""

    def __init__(self, models: Optional[Iterable[ModelDescriptor]] = None, default_key: str = "anything"):
        self._models: Dict[str, ModelDescriptor] = {}
        for model in models if models is not None else DEFAULT_MODELS:
            self._models[model.filename] = model
        if not self._models:
            raise ValueError("ModelCatalog needs at least one model")

        default = self._find_key(default_key)
        if default is None:
            logger.warning(f"Default model key '{default_key}' not in catalog, using first model")
            default = next(iter(self._models.values()))
        self.default = default
        logger.debug(f"Initialized {len(self._models)} model configurations (default: {self.default.key})")

    def _find_key(self, key: str) -> Optional[ModelDescriptor]:
        key = key.lower()
        for model in self._models.values():
            if model.key == key:
                return model
        return None

    def resolve(self, key_or_filename: Optional[str]) -> ModelDescriptor:
        """Look up by logical key, then by filename. Unknown values give the default model."""
        if not key_or_filename:
            return self.default
        model = self._find_key(key_or_filename)
        if model is not None:
            return model
        model = self._models.get(key_or_filename)
        if model is not None:
            return model
        lowered = key_or_filename.lower()
        for filename, candidate in self._models.items():
            if filename.lower() == lowered:
                return candidate
        logger.info(f"Unknown model '{key_or_filename}', falling back to {self.default.filename}")
        return self.default

    def get(self, filename: str) -> ModelDescriptor:
        if filename not in self._models:
            raise KeyError(f"Model '{filename}' not found")
        return self._models[filename]

    def list(self) -> List[ModelDescriptor]:
        return list(self._models.values())

    def by_flags(self, flags: Iterable[Union[str, SelectionFlag]]) -> ModelDescriptor:
        """Best match by number of matching style tags; the default model when nothing matches."""
        wanted = [flag.value if isinstance(flag, SelectionFlag) else str(flag).lower() for flag in flags]
        best, best_score = None, 0
        for model in self._models.values():
            score = sum(1 for flag in wanted if flag in model.flags)
            if score > best_score:
                best, best_score = model, score
        return best or self.default

    def parse_selection_flags(self, text: Optional[str]) -> ModelDescriptor:
        return self.apply_options(parse_selection_options(text))

    def apply_options(self, options: SelectionOptions) -> ModelDescriptor:
        """Resolve the base model for parsed options and layer quality overrides on its defaults."""
        if options.model_key:
            base = self.resolve(options.model_key)
        elif options.style_flags:
            base = self.by_flags(options.style_flags)
        else:
            base = self.default

        overrides: Dict[str, Any] = {}
        for flag, values in QUALITY_OVERRIDES:
            if flag in options.flags:
                overrides.update(values)
        if not overrides:
            return base
        return replace(base, default_settings=replace(base.default_settings, **overrides))

    def recommend_for_prompt(self, prompt: str) -> List[Dict[str, Any]]:
        prompt_lower = (prompt or "").lower()
        recommendations = []
        for style, indicators in STYLE_INDICATORS.items():
            matches = [indicator for indicator in indicators if indicator in prompt_lower]
            if not matches:
                continue
            recommendations.append({
                "style": style,
                "confidence": len(matches) / len(indicators),
                "matches": matches,
                "models": [m for m in self._models.values() if style in m.flags],
            })
        recommendations.sort(key=lambda r: r["confidence"], reverse=True)
        return recommendations

    def stats(self) -> Dict[str, Any]:
        by_style: Dict[str, int] = {}
        by_speed: Dict[str, int] = {}
        by_quality: Dict[str, int] = {}
        for model in self._models.values():
            by_style[model.style] = by_style.get(model.style, 0) + 1
            by_speed[model.speed] = by_speed.get(model.speed, 0) + 1
            by_quality[model.quality] = by_quality.get(model.quality, 0) + 1
        return {
            "total": len(self._models),
            "by_style": by_style,
            "by_speed": by_speed,
            "by_quality": by_quality,
        }
