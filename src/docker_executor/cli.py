"""Command line interface: ``docker-executor``."""

import asyncio
import json
import signal
import sys

from rich.console import Console
from rich.table import Table
import typer

from docker_executor.config import Settings, get_settings
from docker_executor.correlation import CORRELATION_PREFIX, new_correlation_id
from docker_executor.deployer import Deployer, InvalidDeploymentRequest
from docker_executor.docker_ops import DockerClientWrapper
from docker_executor.logging_config import setup_logging
from docker_executor.models import Deployment, DeploymentResult
from docker_executor.templates import TemplateCatalog

app = typer.Typer(
    name="docker-executor",
    help="Run deployment templates as ephemeral Docker containers",
    add_completion=False,
)
console = Console()


def _settings() -> Settings:
    settings = get_settings()
    setup_logging(
        service_name=settings.service_name,
        log_format=settings.log_format,
        log_level=settings.log_level,
        stream=sys.stderr,
    )
    return settings


def _build_deployer(settings: Settings) -> tuple[Deployer, DockerClientWrapper]:
    docker = DockerClientWrapper(
        base_url=settings.docker_base_url, max_workers=settings.docker_max_workers
    )
    return Deployer.from_settings(settings, docker), docker


def _parse_parameters(values: list[str]) -> dict[str, str]:
    parameters = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"Expected key=value, got {item!r}", param_hint="--param")
        parameters[name] = value
    return parameters


def _print_result(result: DeploymentResult) -> None:
    table = Table(title=f"Deployment {result.deployment_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Success", "yes" if result.success else "[red]no[/red]")
    table.add_row("State", result.state.value)
    table.add_row("Container", result.container_id or "N/A")
    table.add_row("Exit code", "N/A" if result.exit_code is None else str(result.exit_code))
    if result.timed_out:
        table.add_row("Timed out", "yes")
    if result.cancelled:
        table.add_row("Cancelled", "yes")
    if result.error:
        table.add_row("Error", f"[red]{result.error}[/red]")
    console.print(table)

    if result.log:
        console.print("\n[bold]Container log:[/bold]")
        console.print(result.log, markup=False, highlight=False)
    for entry in result.logs:
        console.print(f"\n[bold]{entry.file_name}:[/bold]")
        console.print(entry.content, markup=False, highlight=False)
    if result.outputs:
        console.print("\n[bold]Outputs:[/bold]")
        console.print_json(data=result.outputs)


def _print_deployment(deployment: Deployment) -> None:
    table = Table(title=f"Deployment {deployment.id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("State", deployment.state.value)
    table.add_row("Container", deployment.container_id or "N/A")
    table.add_row("Image", deployment.image_tag or "N/A")
    if deployment.exit_code is not None:
        table.add_row("Exit code", str(deployment.exit_code))
    table.add_row("Log files", ", ".join(log.file_name for log in deployment.logs) or "-")
    console.print(table)

    if deployment.outputs:
        console.print("\n[bold]Outputs:[/bold]")
        console.print_json(data=deployment.outputs)


async def _run_deploy(
    settings: Settings, deployment_id: str, image: str, parameters: dict[str, str]
) -> DeploymentResult:
    deployer, docker = _build_deployer(settings)
    cancel_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except (NotImplementedError, RuntimeError):
            # No signal support (non-main thread or platform without it)
            pass

    try:
        return await deployer.deploy(deployment_id, image, parameters, cancel_event=cancel_event)
    finally:
        docker.close()


@app.command()
def templates(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List deployment templates."""
    settings = _settings()
    catalog = TemplateCatalog.load(settings.templates_file)

    if json_output:
        typer.echo(json.dumps([t.model_dump(mode="json") for t in catalog.list()], indent=2))
        return

    table = Table(title="Templates")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Image")
    table.add_column("Parameters")
    for template in catalog.list():
        table.add_row(
            str(template.id),
            template.name,
            template.image,
            ", ".join(f"{p.name} ({p.type.value})" for p in template.parameters) or "-",
        )
    console.print(table)


@app.command()
def deploy(
    template_id: int,
    param: list[str] = typer.Option(
        [], "--param", "-p", help="Template parameter as key=value (repeatable)"
    ),
    deployment_id: str = typer.Option(None, "--id", help="Deployment ID (generated if omitted)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Deploy a template and wait for it to finish."""
    settings = _settings()
    catalog = TemplateCatalog.load(settings.templates_file)
    parameters = _parse_parameters(param)

    template = catalog.get(template_id)
    if template is None:
        console.print(f"[red]Error:[/red] Template {template_id} not found")
        raise typer.Exit(code=1)

    undeclared = catalog.undeclared_parameters(template, parameters)
    if undeclared:
        console.print(
            f"[red]Error:[/red] Parameters not declared by template {template_id}: "
            f"{', '.join(undeclared)}"
        )
        raise typer.Exit(code=2)

    if deployment_id is None:
        deployment_id = new_correlation_id().removeprefix(CORRELATION_PREFIX)

    try:
        result = asyncio.run(_run_deploy(settings, deployment_id, template.image, parameters))
    except InvalidDeploymentRequest as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2) from e

    if json_output:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_result(result)

    if not result.success:
        raise typer.Exit(code=1)


@app.command("list")
def list_deployments(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List deployments known to the container runtime."""
    settings = _settings()

    async def _list() -> list[Deployment]:
        deployer, docker = _build_deployer(settings)
        try:
            return await deployer.list_deployments()
        finally:
            docker.close()

    deployments = asyncio.run(_list())

    if json_output:
        typer.echo(json.dumps([d.model_dump(mode="json") for d in deployments], indent=2))
        return

    if not deployments:
        console.print("No deployments found")
        return

    table = Table(title="Deployments")
    table.add_column("ID", style="cyan")
    table.add_column("State", style="green")
    table.add_column("Image")
    table.add_column("Container")
    for d in deployments:
        table.add_row(d.id, d.state.value, d.image_tag or "N/A", (d.container_id or "N/A")[:12])
    console.print(table)


@app.command()
def get(
    deployment_id: str,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show a single deployment."""
    settings = _settings()

    async def _get() -> Deployment | None:
        deployer, docker = _build_deployer(settings)
        try:
            return await deployer.get_deployment(deployment_id)
        finally:
            docker.close()

    try:
        deployment = asyncio.run(_get())
    except InvalidDeploymentRequest as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2) from e

    if deployment is None:
        console.print(f"[red]Error:[/red] Deployment {deployment_id} not found")
        raise typer.Exit(code=1)

    if json_output:
        typer.echo(deployment.model_dump_json(indent=2))
    else:
        _print_deployment(deployment)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),  # noqa: S104
    port: int = typer.Option(8000, help="Bind port"),
):
    """Run the HTTP API."""
    import uvicorn

    _settings()
    # uvicorn records go through the handler installed by setup_logging.
    uvicorn.run("docker_executor.main:app", host=host, port=port, log_config=None)


if __name__ == "__main__":
    app()
