"""Deployment orchestrator.

Runs one deployment as an ephemeral container:

  state dir -> tfvars.json -> resolve image -> create + start container
  -> wait for termination -> container log + logs/*.log + outputs -> remove

The container runtime is the only record of a deployment (see
``repository.py``); nothing here keeps deployment state between calls
beyond the set of in-flight deploy tasks needed for shutdown.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import re
from typing import Any, Mapping

from docker.errors import DockerException
from docker.types import LogConfig
import structlog

from docker_executor.codec import OutputsFormatError, read_outputs, write_parameters
from docker_executor.completion import CompletionWaiter, build_completion_waiter
from docker_executor.config import Settings
from docker_executor.docker_ops import DockerClientWrapper
from docker_executor.log_reader import read_deployment_logs
from docker_executor.models import Deployment, DeploymentResult, DeploymentState, LogEntry
from docker_executor.repository import (
    DEPLOYMENT_ID_LABEL,
    IMAGE_TAG_LABEL,
    TASK_TYPE_LABEL,
    DeploymentRepository,
    decode_log,
)
from docker_executor.state_dirs import StateDirectoryManager

logger = structlog.get_logger()

CONTAINER_NAME_PREFIX = "deploy-"
STATE_MOUNT_TARGET = "/root/state"

# Escape sequences make captured logs unreadable.
CONTAINER_ENVIRONMENT = {
    "ANSIBLE_NOCOLOR": "1",
    "TF_CLI_ARGS": "-no-color",
    "NO_COLOR": "1",
}

# Docker container names: [a-zA-Z0-9][a-zA-Z0-9_.-]*
DEPLOYMENT_ID_PATTERN = re.compile(r"[a-zA-Z0-9][a-zA-Z0-9_.-]*")


class InvalidDeploymentRequest(ValueError):
    """Raised when deploy() is called with arguments it cannot act on."""

    pass


class _Outcome(Enum):
    TERMINATED = "terminated"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class _Progress:
    """What a single deploy() call has done and collected so far."""

    deployment_id: str
    container_id: str | None = None
    container_removed: bool = False
    exit_code: int | None = None
    container_log: str = ""
    logs: list[LogEntry] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)

    def result(self, success: bool, error: str | None = None, **kwargs: Any) -> DeploymentResult:
        return DeploymentResult(
            deployment_id=self.deployment_id,
            success=success,
            state=DeploymentState.SUCCESSFUL if success else DeploymentState.FAILED,
            container_id=self.container_id,
            exit_code=self.exit_code,
            log=self.container_log,
            logs=self.logs,
            outputs=self.outputs,
            error=error,
            **kwargs,
        )

    def failed(self, error: str, **kwargs: Any) -> DeploymentResult:
        return self.result(False, error, **kwargs)


class Deployer:
    """Executes deployment templates as containers and reports on them."""

    def __init__(
        self,
        docker: DockerClientWrapper,
        state_dirs: StateDirectoryManager,
        completion_waiter: CompletionWaiter,
        extra_labels: Mapping[str, str] | None = None,
    ):
        self.docker = docker
        self.state_dirs = state_dirs
        self.completion_waiter = completion_waiter
        self.extra_labels = dict(extra_labels or {})
        self.repository = DeploymentRepository(docker, state_dirs)

        self._closing = asyncio.Event()
        self._in_flight: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings, docker: DockerClientWrapper) -> "Deployer":
        state_dirs = StateDirectoryManager(
            local_root=settings.resolved_local_state_directory,
            host_root=settings.resolved_host_state_directory,
        )
        return cls(
            docker=docker,
            state_dirs=state_dirs,
            completion_waiter=build_completion_waiter(settings, docker),
            extra_labels=settings.extra_labels,
        )

    @staticmethod
    def container_name(deployment_id: str) -> str:
        return f"{CONTAINER_NAME_PREFIX}{deployment_id}"

    def container_labels(self, deployment_id: str, template_image: str) -> dict[str, str]:
        labels = dict(self.extra_labels)
        labels[TASK_TYPE_LABEL] = "deployment"
        labels[DEPLOYMENT_ID_LABEL] = deployment_id
        labels[IMAGE_TAG_LABEL] = template_image
        return labels

    @staticmethod
    def validate_request(
        deployment_id: str, template_image: str, parameters: Mapping[str, str] | None
    ) -> None:
        """Reject a deploy request before it has any side effect."""
        if not deployment_id or not DEPLOYMENT_ID_PATTERN.fullmatch(deployment_id):
            raise InvalidDeploymentRequest(f"Invalid deployment ID: {deployment_id!r}")
        if not template_image or not template_image.strip():
            raise InvalidDeploymentRequest("Must supply a valid template image name.")
        if parameters is None:
            raise InvalidDeploymentRequest("Template parameters must not be None.")
        for key, value in parameters.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise InvalidDeploymentRequest(
                    f"Template parameters must be strings: {key!r}={value!r}"
                )

    async def deploy(
        self,
        deployment_id: str,
        template_image: str,
        parameters: Mapping[str, str],
        cancel_event: asyncio.Event | None = None,
    ) -> DeploymentResult:
        """Run a deployment to completion.

        Args:
            deployment_id: Caller-supplied unique ID (also names the container
                and the state directory).
            template_image: Tag of the image implementing the template.
            parameters: Template parameters, written to tfvars.json.
            cancel_event: Optional signal that aborts waiting; the container
                is then removed and a cancelled result returned.

        Returns:
            The deployment result. Runtime failures are reported in the result,
            never raised.

        Raises:
            InvalidDeploymentRequest: If the arguments are invalid.
        """
        self.validate_request(deployment_id, template_image, parameters)
        log = logger.bind(deployment_id=deployment_id)
        progress = _Progress(deployment_id=deployment_id)

        if self._closing.is_set():
            log.warning("deployment_rejected_shutting_down")
            return DeploymentResult.failed(
                deployment_id, "deployer is shutting down", cancelled=True
            )

        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)
        try:
            return await self._deploy(template_image, parameters, cancel_event, progress, log)
        except asyncio.CancelledError:
            log.warning("deployment_task_cancelled", container_id=progress.container_id)
            if progress.container_id and not progress.container_removed:
                await asyncio.shield(self._remove_container(progress, log))
            raise
        except Exception as e:
            log.error(
                "deployment_unexpected_error",
                error=str(e),
                error_type=type(e).__name__,
                container_id=progress.container_id,
                exc_info=True,
            )
            if progress.container_id and not progress.container_removed:
                await self._salvage_container_log(progress, log)
                await self._remove_container(progress, log)
                await self._salvage_state_directory(progress, log)
            return progress.failed(f"unexpected error: {e}")
        finally:
            if task is not None:
                self._in_flight.discard(task)

    async def _deploy(
        self,
        template_image: str,
        parameters: Mapping[str, str],
        cancel_event: asyncio.Event | None,
        progress: _Progress,
        log: structlog.stdlib.BoundLogger,
    ) -> DeploymentResult:
        dirs = await asyncio.to_thread(self.state_dirs.materialize, progress.deployment_id)
        log.info(
            "deployment_started",
            image=template_image,
            local_state_directory=str(dirs.local_path),
            host_state_directory=str(dirs.host_path),
        )

        try:
            await asyncio.to_thread(write_parameters, parameters, dirs.local_path)
        except OSError as e:
            log.error("parameters_write_failed", error=str(e))
            return progress.failed(f"failed to write template parameters: {e}")

        try:
            image = await self.docker.find_image_by_tag(template_image)
        except DockerException as e:
            log.error("image_lookup_failed", image=template_image, error=str(e))
            return progress.failed(f"failed to look up image {template_image}: {e}")

        if image is None:
            log.error("image_not_found", image=template_image)
            return progress.failed(f"image not found: {template_image}")

        log.info("template_image_resolved", image=template_image, image_id=image.id)

        try:
            progress.container_id = await self.docker.create_container(
                image.id,
                name=self.container_name(progress.deployment_id),
                detach=False,  # attach stdout/stderr
                environment=CONTAINER_ENVIRONMENT,
                labels=self.container_labels(progress.deployment_id, template_image),
                volumes={str(dirs.host_path): {"bind": STATE_MOUNT_TARGET, "mode": "rw"}},
                log_config=LogConfig(type=LogConfig.types.JSON, config={}),
            )
            log.info("container_created", container_id=progress.container_id)

            await self.docker.start_container(progress.container_id)
            log.info("container_started", container_id=progress.container_id)
        except DockerException as e:
            log.error(
                "container_launch_failed",
                container_id=progress.container_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            if progress.container_id:
                # Created but never started: nothing to wait for.
                await self._remove_container(progress, log)
            return progress.failed(f"failed to launch container: {e}")

        outcome = await self._await_completion(progress.container_id, cancel_event)

        if outcome is _Outcome.CANCELLED:
            log.warning("deployment_cancelled", container_id=progress.container_id)
            await self._salvage_container_log(progress, log)
            await self._remove_container(progress, log)
            await self._salvage_state_directory(progress, log)
            return progress.failed("deployment cancelled", cancelled=True)

        if outcome is _Outcome.TIMED_OUT:
            # Termination was never confirmed: leave the container for inspection.
            log.error("deployment_timed_out", container_id=progress.container_id)
            await self._salvage_state_directory(progress, log)
            return progress.failed("timed out waiting for deployment container", timed_out=True)

        return await self._collect(progress, log)

    async def _await_completion(
        self, container_id: str, cancel_event: asyncio.Event | None
    ) -> _Outcome:
        waiter = asyncio.create_task(self.completion_waiter.wait(container_id))
        stop_signals = [asyncio.create_task(self._closing.wait())]
        if cancel_event is not None:
            stop_signals.append(asyncio.create_task(cancel_event.wait()))

        tasks = [waiter, *stop_signals]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        if waiter in done:
            return _Outcome.TERMINATED if waiter.result() else _Outcome.TIMED_OUT
        return _Outcome.CANCELLED

    async def _collect(
        self, progress: _Progress, log: structlog.stdlib.BoundLogger
    ) -> DeploymentResult:
        """Read everything the terminated container left behind, then remove it."""
        local_path = self.state_dirs.local_path(progress.deployment_id)
        error = None
        try:
            inspection = await self.docker.inspect_container(progress.container_id)
            progress.exit_code = inspection.exit_code

            await self._salvage_container_log(progress, log)
            log.info(
                "container_log_read",
                container_id=progress.container_id,
                length=len(progress.container_log),
            )

            progress.logs = await asyncio.to_thread(read_deployment_logs, local_path)
            try:
                progress.outputs = await asyncio.to_thread(read_outputs, local_path)
            except OutputsFormatError as e:
                log.error("outputs_malformed", error=str(e))
                error = f"malformed outputs: {e}"
        finally:
            await self._remove_container(progress, log)

        if progress.exit_code != 0:
            error = error or f"deployment container exited with code {progress.exit_code}"

        success = error is None
        log.info(
            "deployment_finished",
            success=success,
            exit_code=progress.exit_code,
            log_files=len(progress.logs),
            outputs=len(progress.outputs),
        )
        return progress.result(success, error)

    async def _salvage_container_log(
        self, progress: _Progress, log: structlog.stdlib.BoundLogger
    ) -> None:
        try:
            progress.container_log = decode_log(await self.docker.get_logs(progress.container_id))
        except DockerException as e:
            log.warning(
                "container_log_unavailable", container_id=progress.container_id, error=str(e)
            )

    async def _salvage_state_directory(
        self, progress: _Progress, log: structlog.stdlib.BoundLogger
    ) -> None:
        local_path = self.state_dirs.local_path(progress.deployment_id)
        try:
            progress.logs = await asyncio.to_thread(read_deployment_logs, local_path)
            progress.outputs = await asyncio.to_thread(read_outputs, local_path)
        except (OSError, OutputsFormatError) as e:
            log.warning("state_directory_salvage_failed", error=str(e))

    async def _remove_container(
        self, progress: _Progress, log: structlog.stdlib.BoundLogger
    ) -> None:
        try:
            await self.docker.remove_container(progress.container_id, force=True)
            progress.container_removed = True
            log.info("container_removed", container_id=progress.container_id)
        except Exception as e:
            log.error(
                "container_remove_failed",
                container_id=progress.container_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def list_deployments(self) -> list[Deployment]:
        """All deployments known to the runtime."""
        logger.info("listing_deployments")
        try:
            deployments = await self.repository.list()
        except Exception as e:
            logger.error("list_deployments_failed", error=str(e), exc_info=True)
            return []

        logger.info("deployments_listed", count=len(deployments))
        return deployments

    async def get_deployment(self, deployment_id: str) -> Deployment | None:
        """The deployment with the given ID, or None if it does not exist."""
        log = logger.bind(deployment_id=deployment_id)
        if not deployment_id or not deployment_id.strip():
            raise InvalidDeploymentRequest("Invalid deployment ID.")

        try:
            deployment = await self.repository.get(deployment_id)
        except Exception as e:
            log.error("get_deployment_failed", error=str(e), exc_info=True)
            return None

        if deployment is None:
            log.info("deployment_not_found")
        else:
            log.info("deployment_retrieved", state=deployment.state.value)
        return deployment

    async def shutdown(self, timeout: float = 30) -> None:
        """Cancel in-flight deployments and wait for them to clean up."""
        self._closing.set()
        pending_tasks = {t for t in self._in_flight if t is not asyncio.current_task()}
        if not pending_tasks:
            return

        logger.info("waiting_for_in_flight_deployments", count=len(pending_tasks))
        _, pending = await asyncio.wait(pending_tasks, timeout=timeout)
        if pending:
            logger.warning("cancelling_in_flight_deployments", count=len(pending))
            for t in pending:
                t.cancel()
