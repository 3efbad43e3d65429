"""Label-based deployment repository.

There is no database: a deployment exists exactly as long as a container
labelled ``deployment.id=<id>`` exists. Listing containers by label is the
table scan, filtering on the label value is the point lookup. Nothing is
cached, so every read reflects the runtime as it is now.
"""

from __future__ import annotations

import asyncio

from docker.errors import DockerException
import structlog

from docker_executor.codec import OutputsFormatError, read_outputs
from docker_executor.docker_ops import ContainerSummary, DockerClientWrapper
from docker_executor.log_reader import read_deployment_logs
from docker_executor.models import Deployment, DeploymentState, LogEntry
from docker_executor.state_dirs import StateDirectoryManager

logger = structlog.get_logger()

TASK_TYPE_LABEL = "task.type"
DEPLOYMENT_ID_LABEL = "deployment.id"
IMAGE_TAG_LABEL = "deployment.image.tag"

# Name of the log entry holding the container's own stdout/stderr.
# Never collides with a state directory log, which always ends in ".log".
CONTAINER_LOG_ENTRY = "container"


def decode_log(raw: bytes | str | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    return raw.decode("utf-8", errors="replace")


def classify_state(status: str, exit_code: int | None) -> DeploymentState:
    """Map a container runtime status to a deployment state."""
    if status == "running":
        return DeploymentState.RUNNING
    if status == "exited":
        return DeploymentState.SUCCESSFUL if exit_code == 0 else DeploymentState.FAILED
    if status == "dead":
        return DeploymentState.FAILED

    logger.info("unexpected_container_state", status=status)
    return DeploymentState.UNKNOWN


class DeploymentRepository:
    """Reconstructs deployments from labelled containers and their state directories."""

    def __init__(self, docker: DockerClientWrapper, state_dirs: StateDirectoryManager):
        self.docker = docker
        self.state_dirs = state_dirs

    async def list(self) -> list[Deployment]:
        """All deployments, including those whose container has stopped."""
        summaries = await self.docker.list_containers(
            filters={"label": DEPLOYMENT_ID_LABEL}, all=True
        )
        return [await self._to_deployment(summary) for summary in summaries]

    async def get(self, deployment_id: str) -> Deployment | None:
        """The deployment with the given ID, or None if no container carries it."""
        summaries = await self.docker.list_containers(
            filters={"label": f"{DEPLOYMENT_ID_LABEL}={deployment_id}"}, all=True
        )
        if not summaries:
            return None

        if len(summaries) > 1:
            logger.warning(
                "duplicate_deployment_containers",
                deployment_id=deployment_id,
                container_ids=[s.id for s in summaries],
            )
        return await self._to_deployment(summaries[0])

    async def _to_deployment(self, summary: ContainerSummary) -> Deployment:
        deployment_id = summary.labels[DEPLOYMENT_ID_LABEL]
        state = classify_state(summary.status, summary.exit_code)

        deployment = Deployment(
            id=deployment_id,
            state=state,
            container_id=summary.id,
            image_tag=summary.labels.get(IMAGE_TAG_LABEL),
            exit_code=summary.exit_code if state.is_terminal else None,
        )
        if state.is_terminal:
            deployment.logs = await self._read_logs(deployment_id, summary.id)
            deployment.outputs = await asyncio.to_thread(self._read_outputs, deployment_id)

        return deployment

    async def _read_logs(self, deployment_id: str, container_id: str) -> list[LogEntry]:
        logs = []
        try:
            local_path = self.state_dirs.local_path(deployment_id)
            logs.extend(await asyncio.to_thread(read_deployment_logs, local_path))
        except (OSError, ValueError) as e:
            logger.warning("deployment_logs_unreadable", deployment_id=deployment_id, error=str(e))

        try:
            raw = await self.docker.get_logs(container_id)
            logs.append(LogEntry(file_name=CONTAINER_LOG_ENTRY, content=decode_log(raw)))
        except DockerException as e:
            logger.warning(
                "container_logs_unavailable",
                deployment_id=deployment_id,
                container_id=container_id,
                error=str(e),
            )
        return logs

    def _read_outputs(self, deployment_id: str) -> dict:
        try:
            return read_outputs(self.state_dirs.local_path(deployment_id))
        except (OutputsFormatError, OSError, ValueError) as e:
            logger.warning(
                "deployment_outputs_unreadable", deployment_id=deployment_id, error=str(e)
            )
            return {}
