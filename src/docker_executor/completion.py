"""Detection of deployment container termination.

Two strategies share one interface:

* ``PollingCompletionWaiter`` (default) inspects the container at a fixed
  interval until it reaches a terminal status or a hard timeout elapses.
  It does not depend on a long-lived connection to the daemon, and it
  rides out transient inspection errors until the timeout.
* ``EventStreamCompletionWaiter`` subscribes to the daemon's ``die`` events
  for the container. It has no hard timeout.

Both are cancelled by cancelling the awaiting task.
"""

from abc import ABC, abstractmethod
import asyncio

from docker.errors import DockerException, NotFound
import structlog

from docker_executor.config import Settings
from docker_executor.docker_ops import DockerClientWrapper

logger = structlog.get_logger()


class CompletionWaiter(ABC):
    """Waits for a started container to terminate."""

    @abstractmethod
    async def wait(self, container_id: str) -> bool:
        """Wait for the container to terminate.

        Returns:
            True once termination is confirmed, False if it could not be
            confirmed (timeout, lost event stream).
        """


class PollingCompletionWaiter(CompletionWaiter):
    def __init__(
        self,
        docker: DockerClientWrapper,
        interval: float = 2.0,
        timeout: float = 30 * 60,
    ):
        self.docker = docker
        self.interval = interval
        self.timeout = timeout

    async def wait(self, container_id: str) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        status = None
        while True:
            try:
                inspection = await self.docker.inspect_container(container_id)
            except NotFound:
                raise
            except DockerException as e:
                # Transient daemon errors: keep polling until the deadline.
                logger.warning(
                    "container_inspect_failed",
                    container_id=container_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            else:
                if inspection.terminated:
                    logger.info(
                        "container_terminated",
                        container_id=container_id,
                        status=inspection.status,
                        exit_code=inspection.exit_code,
                    )
                    return True
                status = inspection.status

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(
                    "container_wait_timed_out",
                    container_id=container_id,
                    status=status,
                    timeout_sec=self.timeout,
                )
                return False

            await asyncio.sleep(min(self.interval, remaining))


class EventStreamCompletionWaiter(CompletionWaiter):
    def __init__(self, docker: DockerClientWrapper):
        self.docker = docker

    async def wait(self, container_id: str) -> bool:
        stream = await self.docker.stream_events(
            filters={"type": "container", "container": container_id, "event": "die"}
        )
        try:
            # The container may have died before we subscribed.
            inspection = await self.docker.inspect_container(container_id)
            if inspection.terminated:
                logger.info("container_terminated", container_id=container_id, source="inspect")
                return True

            while True:
                event = await self.docker.next_event(stream)
                if event is None:
                    break

                status = event.get("status") or event.get("Action")
                logger.debug("container_event", container_id=container_id, status=status)
                if status == "die":
                    logger.info("container_terminated", container_id=container_id, source="events")
                    return True
        finally:
            stream.close()

        logger.warning("event_stream_ended", container_id=container_id)
        inspection = await self.docker.inspect_container(container_id)
        return inspection.terminated


def build_completion_waiter(settings: Settings, docker: DockerClientWrapper) -> CompletionWaiter:
    """Create the completion waiter selected by ``settings.completion_strategy``."""
    if settings.completion_strategy == "events":
        return EventStreamCompletionWaiter(docker)
    return PollingCompletionWaiter(
        docker,
        interval=settings.poll_interval_seconds,
        timeout=settings.completion_timeout_seconds,
    )
