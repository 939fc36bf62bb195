class WorkflowError(Exception):
    """Base class for failures raised while running a workflow."""


class WorkflowNotFoundError(WorkflowError):
    def __init__(self, workflow_id: str):
        super().__init__("Workflow not found")
        self.workflow_id = workflow_id


class WorkflowInactiveError(WorkflowError):
    def __init__(self, workflow_id: str):
        super().__init__("Workflow is not active")
        self.workflow_id = workflow_id


class BrokerError(WorkflowError):
    """The integration broker rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CompletionError(WorkflowError):
    """The completion service returned an unusable response."""


class ActivationError(WorkflowError):
    """The workflow cannot be activated in its current configuration."""
