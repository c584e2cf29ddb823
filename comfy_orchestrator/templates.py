import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import Settings
from .errors import GraphFormatError, TemplateNotFound
from .graph import Graph
from .workflow import GraphMetadata, extract_metadata

logger = logging.getLogger(__name__)


@dataclass
class WorkflowTemplate:
    name: str
    graph: Graph
    metadata: GraphMetadata
    path: Optional[str] = None


@dataclass
class TemplateRequirements:
    needs_controlnet: bool = False
    needs_lora: bool = False
    preferred_steps: Optional[int] = None
    max_nodes: Optional[int] = None


@dataclass
class Recommendation:
    name: str
    score: int
    reasons: List[str] = field(default_factory=list)
    metadata: Optional[GraphMetadata] = None


def name_variations(name: str) -> List[str]:
    """Lookup keys for a template name: as given, dashes and underscores swapped, lowercased."""
    base = name[:-5] if name.lower().endswith(".json") else name
    variations = []
    for candidate in (base, base.replace("_", "-"), base.replace("-", "_")):
        for value in (candidate, candidate.lower()):
            if value not in variations:
                variations.append(value)
    return variations


def load_workflow_file(path: str) -> Graph:
    """Read one API-format or native-format workflow JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return Graph.from_wire(data)


class TemplateStore:
    """Named workflow graphs loaded from a directory of JSON files."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory if directory is not None else Settings.WORKFLOW_DIR
        self._templates: Dict[str, WorkflowTemplate] = {}
        self._loaded = False

    def load(self) -> None:
        if self._loaded:
            return
        self._loaded = True

        try:
            filenames = sorted(os.listdir(self.directory))
        except OSError as e:
            logger.warning(f"Could not read workflow directory {self.directory}: {e}")
            return

        for filename in filenames:
            if not filename.lower().endswith(".json"):
                continue
            path = os.path.join(self.directory, filename)
            try:
                graph = load_workflow_file(path)
            except (OSError, ValueError) as e:
                # json.JSONDecodeError and GraphFormatError are both ValueErrors
                logger.warning(f"Skipping workflow {filename}: {e}")
                continue
            name = filename[:-5]
            self._templates[name] = WorkflowTemplate(name, graph, extract_metadata(graph), path)
            logger.debug(f"Loaded workflow template {name} ({len(graph)} nodes)")

        logger.info(f"Loaded {len(self._templates)} workflow templates from {self.directory}")

    def reload(self) -> None:
        self._templates.clear()
        self._loaded = False
        self.load()

    def register(self, name: str, graph: Graph) -> WorkflowTemplate:
        if not isinstance(graph, Graph):
            raise GraphFormatError(f"Template {name} must be a Graph")
        template = WorkflowTemplate(name, graph, extract_metadata(graph))
        self._templates[name] = template
        return template

    def get(self, name: str) -> WorkflowTemplate:
        self.load()
        if name in self._templates:
            return self._templates[name]

        by_lower = {key.lower(): key for key in self._templates}
        for variation in name_variations(name):
            key = by_lower.get(variation.lower())
            if key is not None:
                return self._templates[key]
        raise TemplateNotFound(name)

    def list(self) -> List[WorkflowTemplate]:
        self.load()
        return list(self._templates.values())

    def names(self) -> List[str]:
        self.load()
        return list(self._templates)

    def stats(self) -> Dict[str, Any]:
        templates = self.list()
        total = len(templates)
        stats: Dict[str, Any] = {
            "total": total,
            "with_controlnet": sum(1 for t in templates if t.metadata.has_controlnet),
            "with_lora": sum(1 for t in templates if t.metadata.has_lora),
            "with_sampler": sum(1 for t in templates if t.metadata.has_sampler),
            "average_nodes": 0,
            "average_steps": 0,
            "average_cfg": 0.0,
        }
        if total:
            stats["average_nodes"] = round(sum(t.metadata.node_count for t in templates) / total)
            stats["average_steps"] = round(sum(t.metadata.estimated_steps for t in templates) / total)
            stats["average_cfg"] = round(sum(t.metadata.estimated_cfg for t in templates) / total, 1)
        return stats

    def recommend(self, requirements: Optional[TemplateRequirements] = None) -> List[Recommendation]:
        """Rank templates against `requirements`, highest score first."""
        requirements = requirements or TemplateRequirements()
        recommendations = []
        for template in self.list():
            meta = template.metadata
            score = 0
            reasons = []
            if requirements.needs_controlnet and meta.has_controlnet:
                score += 10
                reasons.append("Has ControlNet support")
            if requirements.needs_lora and meta.has_lora:
                score += 10
                reasons.append("Has LoRA support")
            if requirements.preferred_steps and abs(meta.estimated_steps - requirements.preferred_steps) <= 5:
                score += 5
                reasons.append(f"Steps close to preferred ({meta.estimated_steps})")
            if requirements.max_nodes and meta.node_count <= requirements.max_nodes:
                score += 3
                reasons.append(f"Efficient node count ({meta.node_count})")
            if meta.has_sampler:
                score += 5
                reasons.append("Has sampler")
            recommendations.append(Recommendation(template.name, score, reasons, meta))

        recommendations.sort(key=lambda r: r.score, reverse=True)
        return recommendations
