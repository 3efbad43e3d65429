"""Deployment template catalog."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping

from pydantic import TypeAdapter
import structlog

from docker_executor.models import ParameterType, Template, TemplateParameter

logger = structlog.get_logger()

DEFAULT_TEMPLATES = [
    Template(
        id=1,
        name="Web application (multi-cloud)",
        image="tintoy/tfa-multicloud-template:stable",
        parameters=[
            TemplateParameter(
                name="app_name",
                type=ParameterType.STRING,
                description="The application name (used as a prefix for resource names).",
            ),
            TemplateParameter(
                name="aws_instance_count",
                type=ParameterType.INTEGER,
                description="The number of AWS EC2 instances to create.",
            ),
        ],
    )
]

_templates_adapter = TypeAdapter(list[Template])


class TemplateCatalog:
    """Read-only set of deployment templates, keyed by ID."""

    def __init__(self, templates: Iterable[Template]):
        self._templates: dict[int, Template] = {}
        for template in templates:
            if template.id in self._templates:
                raise ValueError(f"Duplicate template ID: {template.id}")
            self._templates[template.id] = template

    @classmethod
    def from_file(cls, path: Path) -> TemplateCatalog:
        """Load a catalog from a JSON array of templates."""
        templates = _templates_adapter.validate_json(Path(path).read_bytes())
        logger.info("template_catalog_loaded", path=str(path), count=len(templates))
        return cls(templates)

    @classmethod
    def default(cls) -> TemplateCatalog:
        return cls(DEFAULT_TEMPLATES)

    @classmethod
    def load(cls, templates_file: Path | None) -> TemplateCatalog:
        if templates_file is None:
            return cls.default()
        return cls.from_file(templates_file)

    def list(self) -> list[Template]:
        return sorted(self._templates.values(), key=lambda t: t.id)

    def get(self, template_id: int) -> Template | None:
        return self._templates.get(template_id)

    @staticmethod
    def undeclared_parameters(template: Template, parameters: Mapping[str, str]) -> list[str]:
        """Names in ``parameters`` that the template does not declare."""
        declared = {p.name for p in template.parameters}
        return sorted(name for name in parameters if name not in declared)
