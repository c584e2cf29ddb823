"""
Error taxonomy for the orchestrator.

Every error here is recoverable by the caller picking another deployment or
another workflow source; none of them should take the process down.
"""

from typing import Any, Dict, List, Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class NoDeploymentAvailable(OrchestratorError):
    pass


class DeploymentNotFound(OrchestratorError):
    def __init__(self, deployment_type: str):
        super().__init__(f"Deployment type '{deployment_type}' not found")
        self.deployment_type = deployment_type


class NoWorkflowFound(OrchestratorError):
    pass


class NoTemplatesAvailable(OrchestratorError):
    pass


class TemplateNotFound(OrchestratorError):
    def __init__(self, name: str):
        super().__init__(f"Workflow template '{name}' not found")
        self.name = name


class HistoryEntryNotFound(OrchestratorError):
    def __init__(self, prompt_id: str, reason: str = "not found in history"):
        super().__init__(f"Workflow {prompt_id} {reason}")
        self.prompt_id = prompt_id


class GraphFormatError(OrchestratorError, ValueError):
    """Raised when wire data cannot be turned into a Graph."""


class GraphValidationError(OrchestratorError):
    """Structured validation failure, raised only when a caller opts in."""

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(f"Workflow validation failed: {'; '.join(self.errors)}")


class WorkflowSubmissionError(OrchestratorError):
    """The backend rejected a submitted graph."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        node_errors: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.node_errors = node_errors or {}


class WorkflowExecutionError(OrchestratorError):
    """The backend accepted the graph but reported a failed execution."""


class JobTimeoutError(OrchestratorError, TimeoutError):
    """A job did not finish within its wait budget."""
