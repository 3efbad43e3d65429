"""Data models for templates, deployments and deployment results."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class DeploymentState(str, Enum):
    """State of a deployment, derived from its container."""

    UNKNOWN = "unknown"
    RUNNING = "running"
    SUCCESSFUL = "successful"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentState.SUCCESSFUL, DeploymentState.FAILED)


class ParameterType(str, Enum):
    """Primitive type tag of a template parameter."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    LIST = "list"
    OBJECT = "object"


class TemplateParameter(BaseModel):
    """A parameter declared by a deployment template."""

    name: str
    type: ParameterType = ParameterType.STRING
    description: str = ""


class Template(BaseModel):
    """A deployment template: a container image plus its declared parameters."""

    id: int
    name: str
    image: str = Field(..., min_length=1, description="Image reference, e.g. 'repo/name:tag'")
    parameters: list[TemplateParameter] = Field(default_factory=list)


class LogEntry(BaseModel):
    """A named log captured from a deployment."""

    file_name: str
    content: str


class Deployment(BaseModel):
    """A deployment as reconstructed from the container runtime and its state directory."""

    id: str
    state: DeploymentState = DeploymentState.UNKNOWN
    container_id: str | None = None
    image_tag: str | None = None
    exit_code: int | None = None
    logs: list[LogEntry] = Field(default_factory=list)
    outputs: dict[str, Any] = Field(default_factory=dict)


class DeploymentResult(BaseModel):
    """Outcome of a single deployment run."""

    deployment_id: str
    success: bool
    state: DeploymentState
    container_id: str | None = None
    exit_code: int | None = None
    log: str = Field(default="", description="Container stdout/stderr")
    logs: list[LogEntry] = Field(
        default_factory=list, description="Log files written by the deployment container"
    )
    outputs: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    timed_out: bool = False
    cancelled: bool = False

    @classmethod
    def failed(cls, deployment_id: str, error: str, **kwargs: Any) -> "DeploymentResult":
        """Create a result representing a failed deployment."""
        return cls(
            deployment_id=deployment_id,
            success=False,
            state=DeploymentState.FAILED,
            error=error,
            **kwargs,
        )


class DeploymentRequest(BaseModel):
    """Request to deploy a template."""

    template_id: int = Field(..., description="ID of the template to deploy")
    parameters: dict[str, str] = Field(
        default_factory=dict,
        description="Template parameters (written to tfvars.json)",
    )
    deployment_id: str | None = Field(
        default=None,
        description="Caller-supplied deployment ID (generated when omitted)",
    )
