"""Resource-kind handlers.

``default_handlers()`` returns a HandlerRegistry with every shipped kind:

    - postgres, rabbitmq, qdrant, pgadmin, container -> ContainerHandler
    - postgres-database                              -> DatabaseHandler
    - process                                        -> ProcessHandler

Pass a DockerCli to share one between handlers; otherwise each handler
creates its own on first use.
"""

from apphost.handlers.base import HandlerContext, HandlerRegistry, ResourceHandler
from apphost.handlers.container import ContainerHandler
from apphost.handlers.database import DatabaseHandler
from apphost.handlers.docker import DockerCli, DockerCommandError, DockerNotFoundError
from apphost.handlers.kinds import KINDS, KindSpec, get_kind
from apphost.handlers.process import ProcessHandler


def default_handlers(docker: DockerCli | None = None) -> HandlerRegistry:
    """Registry with a handler for every preset in KINDS."""
    registry = HandlerRegistry()
    process = ProcessHandler()
    for name, spec in KINDS.items():
        if spec.handler == "process":
            registry.register(name, process)
        elif spec.handler == "database":
            registry.register(name, DatabaseHandler(spec, docker))
        else:
            registry.register(name, ContainerHandler(spec, docker))
    return registry


__all__ = [
    "ContainerHandler",
    "DatabaseHandler",
    "DockerCli",
    "DockerCommandError",
    "DockerNotFoundError",
    "HandlerContext",
    "HandlerRegistry",
    "KINDS",
    "KindSpec",
    "ProcessHandler",
    "ResourceHandler",
    "default_handlers",
    "get_kind",
]
