"""FastAPI dependencies.

Long-lived objects are built once in the application lifespan and kept on
``app.state``; these accessors hand them to route handlers.
"""

from fastapi import Request

from docker_executor.deployer import Deployer
from docker_executor.templates import TemplateCatalog


def get_deployer(request: Request) -> Deployer:
    return request.app.state.deployer


def get_template_catalog(request: Request) -> TemplateCatalog:
    return request.app.state.templates
