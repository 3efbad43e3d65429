"""Templates router."""

from fastapi import APIRouter, Depends, HTTPException, status

from docker_executor.dependencies import get_template_catalog
from docker_executor.models import Template
from docker_executor.templates import TemplateCatalog

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("", response_model=list[Template])
async def list_templates(
    catalog: TemplateCatalog = Depends(get_template_catalog),
) -> list[Template]:
    """List deployment templates."""
    return catalog.list()


@router.get("/{template_id}", response_model=Template)
async def get_template(
    template_id: int,
    catalog: TemplateCatalog = Depends(get_template_catalog),
) -> Template:
    """Get a deployment template by ID."""
    template = catalog.get(template_id)
    if template is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Template {template_id} not found",
        )
    return template
