"""Deployments router."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
import structlog

from docker_executor.correlation import CORRELATION_PREFIX, get_correlation_id
from docker_executor.dependencies import get_deployer, get_template_catalog
from docker_executor.deployer import DEPLOYMENT_ID_PATTERN, Deployer, InvalidDeploymentRequest
from docker_executor.models import Deployment, DeploymentRequest, DeploymentResult
from docker_executor.templates import TemplateCatalog

logger = structlog.get_logger()

router = APIRouter(prefix="/deployments", tags=["deployments"])


def _default_deployment_id() -> str:
    """Derive a deployment ID from the request correlation ID."""
    correlation_id = get_correlation_id() or ""
    candidate = correlation_id.removeprefix(CORRELATION_PREFIX)
    if candidate and DEPLOYMENT_ID_PATTERN.fullmatch(candidate):
        return candidate
    return uuid.uuid4().hex[:12]


@router.get("", response_model=list[Deployment])
async def list_deployments(
    deployer: Deployer = Depends(get_deployer),
) -> list[Deployment]:
    """List all deployments known to the container runtime."""
    return await deployer.list_deployments()


@router.get("/{deployment_id}", response_model=Deployment)
async def get_deployment(
    deployment_id: str,
    deployer: Deployer = Depends(get_deployer),
) -> Deployment:
    """Get a deployment by ID."""
    deployment = await deployer.get_deployment(deployment_id)
    if deployment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Deployment {deployment_id} not found",
        )
    return deployment


@router.post("", response_model=DeploymentResult, status_code=status.HTTP_201_CREATED)
async def deploy_template(
    request: DeploymentRequest,
    deployer: Deployer = Depends(get_deployer),
    catalog: TemplateCatalog = Depends(get_template_catalog),
) -> DeploymentResult:
    """Deploy a template and wait for the deployment to finish."""
    template = catalog.get(request.template_id)
    if template is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Template {request.template_id} not found",
        )

    undeclared = catalog.undeclared_parameters(template, request.parameters)
    if undeclared:
        raise HTTPException(
            status_code=422,
            detail=f"Parameters not declared by template {template.id}: {', '.join(undeclared)}",
        )

    deployment_id = request.deployment_id or _default_deployment_id()
    logger.info(
        "deployment_requested",
        deployment_id=deployment_id,
        template_id=template.id,
        image=template.image,
    )

    try:
        return await deployer.deploy(deployment_id, template.image, request.parameters)
    except InvalidDeploymentRequest as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
