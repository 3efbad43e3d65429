"""Shared fixtures: a mocked Docker adapter and a deployer wired to it."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from docker_executor.deployer import Deployer
from docker_executor.docker_ops import ContainerInspection, ImageSummary
from docker_executor.state_dirs import StateDirectoryManager

TEMPLATE_IMAGE = "tintoy/tfa-multicloud-template:stable"
IMAGE_ID = "sha256:0123456789ab"
CONTAINER_ID = "c0ffee000001"


@pytest.fixture
def mock_docker():
    """Mock DockerClientWrapper: the image exists and containers exit 0."""
    docker = MagicMock()
    docker.find_image_by_tag = AsyncMock(
        return_value=ImageSummary(id=IMAGE_ID, tags=(TEMPLATE_IMAGE,))
    )
    docker.create_container = AsyncMock(return_value=CONTAINER_ID)
    docker.start_container = AsyncMock(return_value=None)
    docker.inspect_container = AsyncMock(
        return_value=ContainerInspection(id=CONTAINER_ID, status="exited", exit_code=0)
    )
    docker.get_logs = AsyncMock(return_value=b"Apply complete!\n")
    docker.remove_container = AsyncMock(return_value=None)
    docker.list_containers = AsyncMock(return_value=[])
    return docker


@pytest.fixture
def completion_waiter():
    """Waiter that confirms termination immediately."""
    waiter = MagicMock()
    waiter.wait = AsyncMock(return_value=True)
    return waiter


@pytest.fixture
def state_root(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def deployer(mock_docker, completion_waiter, state_root):
    return Deployer(
        docker=mock_docker,
        state_dirs=StateDirectoryManager(state_root),
        completion_waiter=completion_waiter,
    )

