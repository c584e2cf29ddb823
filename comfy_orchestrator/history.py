"""
History-Based Workflow Discovery

Mines ComfyUI's /history for graphs that already ran successfully so they can
be reused when no template fits.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings
from .errors import GraphFormatError, HistoryEntryNotFound, NoWorkflowFound
from .graph import Graph
from .workflow import GenerationRequest, GraphMetadata, extract_metadata, inject

logger = logging.getLogger(__name__)

DEFAULT_TYPE = "anime"

# Model filename fragment -> workflow type, first match wins
TYPE_FRAGMENTS = (
    ("anything", "anime"),
    ("realism", "realistic"),
    ("pony", "furry"),
    ("deliberate", "artistic"),
)

TIMESTAMP_MESSAGES = ("execution_success", "execution_start")


@dataclass
class HistoryRequirements:
    type: str = DEFAULT_TYPE
    prefer_recent: bool = True
    min_nodes: int = 5
    max_nodes: int = 20


@dataclass
class HistoryEntry:
    id: str
    graph: Graph
    metadata: GraphMetadata
    type: str
    timestamp: Optional[float]
    position: int = 0

    @property
    def name(self) -> str:
        return f"{self.type}-{self.metadata.node_count}nodes-{self.metadata.estimated_steps}steps"

    @property
    def description(self) -> str:
        return f"{self.type} workflow with {self.metadata.node_count} nodes"

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "node_count": self.metadata.node_count,
            "model": self.metadata.model_filename,
            "steps": self.metadata.estimated_steps,
            "timestamp": self.timestamp,
        }


def classify_model(model_filename: Optional[str]) -> str:
    lowered = (model_filename or "").lower()
    for fragment, workflow_type in TYPE_FRAGMENTS:
        if fragment in lowered:
            return workflow_type
    return DEFAULT_TYPE


def entry_graph(entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The API-format graph of a history entry; "prompt" is [number, id, graph, extra, outputs]."""
    prompt = entry.get("prompt")
    if isinstance(prompt, (list, tuple)) and len(prompt) >= 3:
        prompt = prompt[2]
    return prompt if isinstance(prompt, dict) and prompt else None


def entry_timestamp(entry: Dict[str, Any]) -> Optional[float]:
    """Execution time in ms from the entry's status messages, if ComfyUI recorded one."""
    messages = (entry.get("status") or {}).get("messages") or []
    found: Dict[str, float] = {}
    for message in messages:
        if isinstance(message, (list, tuple)) and len(message) >= 2 and isinstance(message[1], dict):
            timestamp = message[1].get("timestamp")
            if isinstance(timestamp, (int, float)):
                found[message[0]] = float(timestamp)
    for name in TIMESTAMP_MESSAGES:
        if name in found:
            return found[name]
    return None


def recency_key(entries: List[HistoryEntry]):
    """Sort key for recency. Falls back to /history order unless every entry is stamped."""
    if all(e.timestamp is not None for e in entries):
        return lambda e: e.timestamp
    return lambda e: e.position


class HistoryDiscovery:
    def __init__(self, client, max_items: Optional[int] = None):
        self.client = client
        self.max_items = max_items if max_items is not None else Settings.HISTORY_MAX_ITEMS

    def _analyze(self, prompt_id: str, entry: Any, position: int) -> Optional[HistoryEntry]:
        if not isinstance(entry, dict):
            logger.debug(f"History entry {prompt_id} is not an object, skipping")
            return None
        status = entry.get("status") or {}
        if status.get("status_str") == "error":
            logger.debug(f"History entry {prompt_id} failed to execute, skipping")
            return None
        raw_graph = entry_graph(entry)
        if raw_graph is None or not entry.get("outputs"):
            return None

        try:
            graph = Graph.from_wire(raw_graph)
        except GraphFormatError as e:
            logger.warning(f"Failed to analyze history workflow {prompt_id}: {e}")
            return None

        metadata = extract_metadata(graph)
        if not metadata.is_complete:
            logger.debug(f"History entry {prompt_id} is incomplete, skipping")
            return None

        return HistoryEntry(
            id=prompt_id,
            graph=graph,
            metadata=metadata,
            type=classify_model(metadata.model_filename),
            timestamp=entry_timestamp(entry),
            position=position,
        )

    async def scan_history(self) -> List[HistoryEntry]:
        try:
            history = await self.client.fetch_history(self.max_items)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to scan history: {e}")
            return []

        workflows = []
        for position, (prompt_id, entry) in enumerate(history.items()):
            analyzed = self._analyze(str(prompt_id), entry, position)
            if analyzed is not None:
                workflows.append(analyzed)

        logger.info(f"Found {len(workflows)} reusable workflows in history")
        return workflows

    async def find_best(self, requirements: Optional[HistoryRequirements] = None) -> HistoryEntry:
        requirements = requirements or HistoryRequirements()
        workflows = await self.scan_history()
        filtered = [
            w for w in workflows
            if w.type == requirements.type
            and requirements.min_nodes <= w.metadata.node_count <= requirements.max_nodes
        ]
        if not filtered:
            logger.warning(f"No history workflows found for type: {requirements.type}")
            raise NoWorkflowFound(f"No history workflows found for type '{requirements.type}'")

        if requirements.prefer_recent:
            filtered.sort(key=recency_key(filtered), reverse=True)
        else:
            filtered.sort(key=lambda w: w.metadata.node_count, reverse=True)

        best = filtered[0]
        logger.info(f"Selected history workflow: {best.name} ({best.id})")
        return best

    async def get_by_id(self, prompt_id: str) -> Graph:
        try:
            entry = await self.client.get_history(prompt_id)
        except (httpx.HTTPError, ValueError) as e:
            raise HistoryEntryNotFound(prompt_id, f"could not be fetched: {e}") from e

        raw_graph = entry_graph(entry) if isinstance(entry, dict) else None
        if raw_graph is None:
            raise HistoryEntryNotFound(prompt_id)
        return Graph.from_wire(raw_graph)

    async def use_by_id(self, prompt_id: str, overrides: Optional[GenerationRequest] = None) -> Graph:
        """Fetch one history graph and return an injected copy of it."""
        graph = await self.get_by_id(prompt_id)
        return inject(graph, overrides or GenerationRequest())

    async def available_types(self) -> List[str]:
        types: List[str] = []
        for workflow in await self.scan_history():
            if workflow.type not in types:
                types.append(workflow.type)
        return types
