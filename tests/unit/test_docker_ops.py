from unittest.mock import MagicMock, patch

from docker.errors import NotFound
import pytest

from docker_executor.docker_ops import DockerClientWrapper


@pytest.fixture
def mock_docker():
    with patch("docker.from_env") as mock:
        yield mock


def _image(image_id, tags):
    image = MagicMock()
    image.id = image_id
    image.tags = tags
    return image


@pytest.mark.asyncio
async def test_find_image_by_tag(mock_docker):
    client_mock = MagicMock()
    mock_docker.return_value = client_mock
    client_mock.images.list.return_value = [
        _image("sha256:aaa", ["other/image:1.0"]),
        _image("sha256:bbb", ["tintoy/tfa-multicloud-template:stable"]),
    ]

    wrapper = DockerClientWrapper()
    image = await wrapper.find_image_by_tag("tintoy/tfa-multicloud-template:stable")

    assert image.id == "sha256:bbb"
    assert image.tags == ("tintoy/tfa-multicloud-template:stable",)


@pytest.mark.asyncio
async def test_find_image_by_tag_untagged_reference_matches_latest(mock_docker):
    client_mock = MagicMock()
    mock_docker.return_value = client_mock
    client_mock.images.list.return_value = [_image("sha256:ccc", ["registry:5000/app:latest"])]

    wrapper = DockerClientWrapper()

    assert (await wrapper.find_image_by_tag("registry:5000/app")).id == "sha256:ccc"
    assert await wrapper.find_image_by_tag("registry:5000/app:2.0") is None


@pytest.mark.asyncio
async def test_find_image_by_tag_ignores_dangling_images(mock_docker):
    client_mock = MagicMock()
    mock_docker.return_value = client_mock
    client_mock.images.list.return_value = [_image("sha256:ddd", [])]

    wrapper = DockerClientWrapper()

    assert await wrapper.find_image_by_tag("missing:tag") is None


@pytest.mark.asyncio
async def test_create_and_start_container(mock_docker):
    client_mock = MagicMock()
    mock_docker.return_value = client_mock
    container_mock = MagicMock()
    container_mock.id = "c-123"
    client_mock.containers.create.return_value = container_mock
    client_mock.containers.get.return_value = container_mock

    wrapper = DockerClientWrapper()
    container_id = await wrapper.create_container("sha256:bbb", name="deploy-d1", detach=False)
    await wrapper.start_container(container_id)

    assert container_id == "c-123"
    client_mock.containers.create.assert_called_once_with(
        "sha256:bbb", name="deploy-d1", detach=False
    )
    client_mock.containers.get.assert_called_once_with("c-123")
    container_mock.start.assert_called_once()


@pytest.mark.asyncio
async def test_inspect_container(mock_docker):
    client_mock = MagicMock()
    mock_docker.return_value = client_mock
    container_mock = MagicMock()
    container_mock.id = "c-123"
    container_mock.attrs = {"State": {"Status": "exited", "ExitCode": 3, "Running": False}}
    client_mock.containers.get.return_value = container_mock

    wrapper = DockerClientWrapper()
    inspection = await wrapper.inspect_container("c-123")

    assert inspection.status == "exited"
    assert inspection.exit_code == 3
    assert inspection.terminated is True
    assert inspection.running is False


@pytest.mark.asyncio
async def test_get_logs_does_not_follow(mock_docker):
    client_mock = MagicMock()
    mock_docker.return_value = client_mock
    container_mock = MagicMock()
    container_mock.logs.return_value = b"line 1\nline 2\n"
    client_mock.containers.get.return_value = container_mock

    wrapper = DockerClientWrapper()
    logs = await wrapper.get_logs("c-123")

    assert logs == b"line 1\nline 2\n"
    container_mock.logs.assert_called_once_with(stdout=True, stderr=True, follow=False)


@pytest.mark.asyncio
async def test_remove_container(mock_docker):
    client_mock = MagicMock()
    mock_docker.return_value = client_mock
    container_mock = MagicMock()
    client_mock.containers.get.return_value = container_mock

    wrapper = DockerClientWrapper()
    await wrapper.remove_container("test-id", force=True)

    client_mock.containers.get.assert_called_once_with("test-id")
    container_mock.remove.assert_called_once_with(force=True, v=False)


@pytest.mark.asyncio
async def test_remove_missing_container_is_noop(mock_docker):
    client_mock = MagicMock()
    mock_docker.return_value = client_mock
    client_mock.containers.get.side_effect = NotFound("No such container")

    wrapper = DockerClientWrapper()
    await wrapper.remove_container("gone", force=True)


@pytest.mark.asyncio
async def test_list_containers(mock_docker):
    client_mock = MagicMock()
    mock_docker.return_value = client_mock
    running = MagicMock()
    running.id = "c-1"
    running.name = "deploy-d1"
    running.labels = {"deployment.id": "d1"}
    running.attrs = {"State": {"Status": "running", "ExitCode": 0}}
    sparse = MagicMock()
    sparse.id = "c-2"
    sparse.name = "deploy-d2"
    sparse.labels = {"deployment.id": "d2"}
    sparse.attrs = {"State": "exited"}
    client_mock.containers.list.return_value = [running, sparse]

    wrapper = DockerClientWrapper()
    summaries = await wrapper.list_containers(filters={"label": "deployment.id"}, all=True)

    client_mock.containers.list.assert_called_once_with(
        all=True, filters={"label": "deployment.id"}, ignore_removed=True
    )
    assert [(s.id, s.status, s.labels["deployment.id"]) for s in summaries] == [
        ("c-1", "running", "d1"),
        ("c-2", "exited", "d2"),
    ]
    assert summaries[1].exit_code is None


@pytest.mark.asyncio
async def test_next_event_returns_none_when_stream_ends(mock_docker):
    mock_docker.return_value = MagicMock()

    wrapper = DockerClientWrapper()
    stream = iter([{"status": "die"}])

    assert await wrapper.next_event(stream) == {"status": "die"}
    assert await wrapper.next_event(stream) is None


def test_base_url_uses_explicit_client(mock_docker):
    with patch("docker.DockerClient") as client_cls:
        DockerClientWrapper(base_url="unix:///var/run/docker.sock")

    client_cls.assert_called_once_with(base_url="unix:///var/run/docker.sock")
    mock_docker.assert_not_called()
