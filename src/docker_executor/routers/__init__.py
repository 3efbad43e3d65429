"""Routers package."""

from . import deployments, templates

__all__ = [
    "deployments",
    "templates",
]
