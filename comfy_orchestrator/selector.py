"""
Workflow Selector

One entry point for getting a graph out of history (by id or best match) or
out of the template store (by name or by type), with an ordered fallback
chain for the "auto" method.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import NoTemplatesAvailable, NoWorkflowFound, OrchestratorError
from .graph import Graph
from .history import HistoryDiscovery, HistoryRequirements
from .templates import TemplateStore
from .workflow import GenerationRequest, GraphMetadata, extract_metadata, inject

logger = logging.getLogger(__name__)

HISTORY_ID = "history-id"
HISTORY_AUTO = "history-auto"
FILE_NAME = "file-name"
FILE_AUTO = "file-auto"
SYNTHESIZED = "synthesized"

METHODS = ("id", "name", "history", "file", "auto")

# Strategies tried in order by method "auto"
AUTO_STRATEGIES = ("history", "file")


@dataclass
class WorkflowQuery:
    method: str = "auto"
    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    type: str = "anime"
    prefer_recent: bool = True
    fallback_to_file: bool = True


@dataclass
class Selection:
    source: str
    graph: Graph
    metadata: GraphMetadata
    id: Optional[str] = None
    name: Optional[str] = None


class WorkflowSelector:
    def __init__(self, history: HistoryDiscovery, templates: TemplateStore):
        self.history = history
        self.templates = templates
        self._strategies = {
            "id": self.select_by_id,
            "name": self.select_by_name,
            "history": self.select_from_history,
            "file": self.select_from_files,
            "auto": self.select_auto,
        }

    async def select(self, query: Optional[WorkflowQuery] = None) -> Selection:
        query = query or WorkflowQuery()
        if query.method not in self._strategies:
            raise ValueError(f"Unknown selection method '{query.method}', expected one of {METHODS}")
        logger.info(f"Selecting workflow: method={query.method}, type={query.type}")
        return await self._strategies[query.method](query)

    async def select_by_id(self, query: WorkflowQuery) -> Selection:
        if not query.workflow_id:
            raise ValueError("Workflow ID is required")
        graph = await self.history.get_by_id(query.workflow_id)
        logger.info(f"Selected workflow by ID: {query.workflow_id}")
        return Selection(HISTORY_ID, graph, extract_metadata(graph), id=query.workflow_id)

    async def select_by_name(self, query: WorkflowQuery) -> Selection:
        if not query.workflow_name:
            raise ValueError("Workflow name is required")
        template = self.templates.get(query.workflow_name)
        logger.info(f"Selected workflow by name: {template.name}")
        return Selection(FILE_NAME, template.graph, template.metadata, name=template.name)

    async def select_from_history(self, query: WorkflowQuery) -> Selection:
        best = await self.history.find_best(
            HistoryRequirements(type=query.type, prefer_recent=query.prefer_recent)
        )
        return Selection(HISTORY_AUTO, best.graph, best.metadata, id=best.id, name=best.name)

    async def select_from_files(self, query: WorkflowQuery) -> Selection:
        templates = self.templates.list()
        if not templates:
            raise NoTemplatesAvailable("No file-based workflows available")

        wanted = query.type.lower()
        selected = next((t for t in templates if wanted in t.name.lower()), templates[0])
        logger.info(f"Selected from files: {selected.name}")
        return Selection(FILE_AUTO, selected.graph, selected.metadata, name=selected.name)

    async def select_auto(self, query: WorkflowQuery) -> Selection:
        strategies = [s for s in AUTO_STRATEGIES if s != "file" or query.fallback_to_file]
        last_error: Optional[Exception] = None
        for name in strategies:
            try:
                return await self._strategies[name](query)
            except OrchestratorError as e:
                logger.warning(f"Workflow selection via {name} failed: {e}")
                last_error = e
        raise NoWorkflowFound(f"No workflows available for type: {query.type}") from last_error

    async def use(self, selection: Selection, params: GenerationRequest) -> Graph:
        """Apply runtime parameters to a selected graph."""
        logger.debug(f"Using workflow from {selection.source}")
        return inject(selection.graph, params)

    async def _history_summaries(self) -> List[Dict[str, Any]]:
        return [entry.summary() for entry in await self.history.scan_history()]

    async def _file_summaries(self) -> List[Dict[str, Any]]:
        return [
            {"name": t.name, "node_count": t.metadata.node_count, "model": t.metadata.model_filename}
            for t in self.templates.list()
        ]

    async def list_available(self) -> Dict[str, List[Dict[str, Any]]]:
        history, files = await asyncio.gather(
            self._history_summaries(), self._file_summaries(), return_exceptions=True
        )
        if isinstance(history, Exception):
            logger.warning(f"Failed to get history workflows: {history}")
            history = []
        if isinstance(files, Exception):
            logger.warning(f"Failed to get file workflows: {files}")
            files = []
        return {"history": history, "files": files}
