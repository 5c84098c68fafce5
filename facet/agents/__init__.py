from .base import AgentClient, AgentPayload, InvocationContext
from .catalog import AgentCatalog, AgentProfile, default_catalog

__all__ = [
    "AgentCatalog",
    "AgentClient",
    "AgentPayload",
    "AgentProfile",
    "InvocationContext",
    "default_catalog",
]
