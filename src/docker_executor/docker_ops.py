import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Iterator

import docker
from docker.errors import NotFound
import structlog

logger = structlog.get_logger()

# Runtime statuses after which a container will never run again.
TERMINAL_STATUSES = frozenset({"exited", "dead"})


@dataclass(frozen=True)
class ImageSummary:
    id: str
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class ContainerSummary:
    id: str
    name: str
    status: str
    exit_code: int | None = None
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ContainerInspection:
    id: str
    status: str
    exit_code: int | None = None
    running: bool = False

    @property
    def terminated(self) -> bool:
        return self.status in TERMINAL_STATUSES


def _state_of(attrs: dict[str, Any]) -> tuple[str, int | None]:
    """Extract (status, exit_code) from container attrs (inspect or list format)."""
    state = attrs.get("State")
    if isinstance(state, dict):
        return state.get("Status", ""), state.get("ExitCode")
    # Sparse list format: State is the bare status string
    return state or "", None


class DockerClientWrapper:
    """
    Async wrapper around blocking docker-py client.
    Abstracts Docker operations to allow mocking and non-blocking execution.
    """

    def __init__(self, base_url: str | None = None, max_workers: int = 5):
        if base_url:
            self._client = docker.DockerClient(base_url=base_url)
        else:
            self._client = docker.from_env()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="docker")

    async def _run(self, func, *args, **kwargs):
        """Run blocking function in thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))

    async def list_images(self) -> list[ImageSummary]:
        """List local images."""
        images = await self._run(self._client.images.list)
        return [ImageSummary(id=img.id, tags=tuple(img.tags or ())) for img in images]

    async def find_image_by_tag(self, tag: str) -> ImageSummary | None:
        """Find a local image carrying the given repository tag.

        An untagged reference (``repo/name``) also matches ``repo/name:latest``,
        mirroring how the daemon names images.
        """
        candidates = {tag}
        if "@" not in tag and ":" not in tag.rsplit("/", 1)[-1]:
            candidates.add(f"{tag}:latest")

        for image in await self.list_images():
            if candidates.intersection(image.tags):
                return image
        return None

    async def create_container(self, image: str, **kwargs) -> str:
        """Create (but do not start) a container. Returns its ID."""
        container = await self._run(self._client.containers.create, image, **kwargs)
        return container.id

    async def get_container(self, container_id: str) -> Any:
        """Get a container by ID or name."""
        return await self._run(self._client.containers.get, container_id)

    async def start_container(self, container_id: str) -> None:
        """Start a created container."""
        container = await self.get_container(container_id)
        await self._run(container.start)

    async def inspect_container(self, container_id: str) -> ContainerInspection:
        """Inspect a container (fresh state, never cached)."""
        container = await self.get_container(container_id)
        status, exit_code = _state_of(container.attrs)
        return ContainerInspection(
            id=container.id,
            status=status,
            exit_code=exit_code,
            running=status == "running",
        )

    async def get_logs(self, container_id: str, stdout: bool = True, stderr: bool = True) -> bytes:
        """Get the entire (non-following) container log."""
        container = await self.get_container(container_id)
        return await self._run(container.logs, stdout=stdout, stderr=stderr, follow=False)

    async def remove_container(
        self, container_id: str, force: bool = False, v: bool = False
    ) -> None:
        """Remove a container."""
        try:
            container = await self.get_container(container_id)
            await self._run(container.remove, force=force, v=v)
        except NotFound:
            logger.debug("container_already_removed", container_id=container_id)

    async def list_containers(
        self, filters: dict[str, Any] | None = None, all: bool = False
    ) -> list[ContainerSummary]:
        """List containers."""
        containers = await self._run(
            self._client.containers.list, all=all, filters=filters, ignore_removed=True
        )
        summaries = []
        for container in containers:
            status, exit_code = _state_of(container.attrs)
            summaries.append(
                ContainerSummary(
                    id=container.id,
                    name=container.name,
                    status=status,
                    exit_code=exit_code,
                    labels=dict(container.labels or {}),
                )
            )
        return summaries

    async def stream_events(
        self, filters: dict[str, Any] | None = None
    ) -> Iterator[dict[str, Any]]:
        """Subscribe to the daemon event stream.

        Returns the docker-py stream of decoded events. Reading it blocks, so
        callers read it via ``next_event``; it must be closed with ``close()``.
        """
        return await self._run(self._client.events, decode=True, filters=filters)

    async def next_event(self, stream: Iterator[dict[str, Any]]) -> dict[str, Any] | None:
        """Read the next event from a stream, or None once the stream ends.

        Runs on the default executor rather than the Docker pool: a read may
        block for as long as the watched container runs.
        """
        return await asyncio.to_thread(next, stream, None)

    def close(self) -> None:
        """Close the Docker client and release worker threads."""
        self._client.close()
        self._executor.shutdown(wait=False)
