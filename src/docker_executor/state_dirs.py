"""Per-deployment state directories.

Each deployment owns ``<root>/<deployment_id>``. The executor may itself run
in a container, so the same directory has two names: the local path this
process opens, and the host path the Docker daemon bind-mounts into the
deployment container.
"""

from dataclasses import dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class StateDirectoryPair:
    local_path: Path
    host_path: Path


class StateDirectoryManager:
    """Maps deployment IDs to their local and host state directories."""

    def __init__(self, local_root: Path, host_root: Path | None = None):
        self.local_root = Path(local_root)
        self.host_root = Path(host_root) if host_root is not None else self.local_root

    @staticmethod
    def _check_id(deployment_id: str) -> None:
        if (
            not deployment_id
            or deployment_id in (".", "..")
            or "/" in deployment_id
            or "\\" in deployment_id
        ):
            raise ValueError(f"Invalid deployment ID for a state directory: {deployment_id!r}")

    def local_path(self, deployment_id: str) -> Path:
        self._check_id(deployment_id)
        return self.local_root / deployment_id

    def host_path(self, deployment_id: str) -> Path:
        self._check_id(deployment_id)
        return self.host_root / deployment_id

    def materialize(self, deployment_id: str) -> StateDirectoryPair:
        """Create (if absent) and return the state directories for a deployment.

        Safe to call repeatedly for the same ID.
        """
        pair = StateDirectoryPair(
            local_path=self.local_path(deployment_id),
            host_path=self.host_path(deployment_id),
        )

        self.local_root.mkdir(parents=True, exist_ok=True)
        pair.local_path.mkdir(exist_ok=True)

        # The host path is only reachable from here when both roots name the same place.
        if pair.host_path != pair.local_path and self.host_root.is_dir():
            pair.host_path.mkdir(exist_ok=True)

        logger.debug(
            "state_directory_ready",
            deployment_id=deployment_id,
            local_path=str(pair.local_path),
            host_path=str(pair.host_path),
        )
        return pair
