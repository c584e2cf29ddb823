__version__ = "0.1.0"

from .comfyui_client import ComfyUIClient
from .deployments import Deployment, DeploymentPreferences, DeploymentRegistry, DeploymentType
from .graph import Edge, Graph, Node, NodeRole
from .history import HistoryDiscovery, HistoryRequirements
from .jobs import JobTracker, JsonFileJobStore, MemoryJobStore
from .job_poller import JobPoller
from .model_catalog import ModelCatalog, ModelDescriptor, SelectionFlag, parse_selection_options
from .pipeline import GenerationOptions, GenerationPipeline, create_pipeline
from .runpod_client import RunPodClient
from .selector import Selection, WorkflowQuery, WorkflowSelector
from .templates import TemplateStore
from .workflow import GenerationRequest, extract_metadata, inject, synthesize, validate

__all__ = [
    "ComfyUIClient",
    "Deployment",
    "DeploymentPreferences",
    "DeploymentRegistry",
    "DeploymentType",
    "Edge",
    "Graph",
    "Node",
    "NodeRole",
    "HistoryDiscovery",
    "HistoryRequirements",
    "JobTracker",
    "JsonFileJobStore",
    "MemoryJobStore",
    "JobPoller",
    "ModelCatalog",
    "ModelDescriptor",
    "SelectionFlag",
    "parse_selection_options",
    "GenerationOptions",
    "GenerationPipeline",
    "create_pipeline",
    "RunPodClient",
    "Selection",
    "WorkflowQuery",
    "WorkflowSelector",
    "TemplateStore",
    "GenerationRequest",
    "extract_metadata",
    "inject",
    "synthesize",
    "validate",
]
