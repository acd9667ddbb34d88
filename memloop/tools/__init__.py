"""Tool handlers, grouped by family.

build_registry assembles the catalog in a fixed order; the order of the
modules below is the order tools are listed to the host.
"""

from memloop.config import DeploymentMode
from memloop.registry import Registry, ToolDefinition
from memloop.tools import (
    conversations,
    guidance,
    knowledge,
    learning,
    plans,
    search,
    secret_store,
    tracking,
)

ALL_TOOLS: tuple[ToolDefinition, ...] = (
    *search.TOOLS,
    *tracking.TOOLS,
    *knowledge.TOOLS,
    *conversations.TOOLS,
    *learning.TOOLS,
    *guidance.TOOLS,
    *plans.TOOLS,
    *secret_store.TOOLS,
)


def build_registry(mode: DeploymentMode = DeploymentMode.DIRECT) -> Registry:
    """The tool catalog for a deployment mode.

    Proxied deployments have no REST credentials, so tools that need the
    REST interface are left out.
    """
    if mode is DeploymentMode.PROXIED:
        return Registry(tool for tool in ALL_TOOLS if not tool.requires_rest)
    return Registry(ALL_TOOLS)


__all__ = ["ALL_TOOLS", "build_registry"]
