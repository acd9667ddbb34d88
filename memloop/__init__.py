"""memloop - MCP bridge to a remote agent-memory backend.

Exposes memory search, apply/outcome tracking and learning tools over the
Model Context Protocol (stdio), with:
- httpx for the memory, echo and REST backends
- pydantic argument models that double as the advertised tool schemas
- an in-process correlation store linking search, apply and outcome calls
"""

__version__ = "0.1.0"

from memloop.config import Config, ConfigurationError, DeploymentMode
from memloop.correlation import CorrelationStore
from memloop.dispatch import Dispatcher, ToolContext
from memloop.envelope import ToolResponse

__all__ = [
    "Config",
    "ConfigurationError",
    "CorrelationStore",
    "DeploymentMode",
    "Dispatcher",
    "ToolContext",
    "ToolResponse",
]
