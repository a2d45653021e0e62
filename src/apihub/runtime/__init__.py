"""Container runtime backends."""

from apihub.runtime.base import ContainerRuntime
from apihub.runtime.docker_runtime import DockerCliRuntime
from apihub.runtime.memory_runtime import InMemoryRuntime

__all__ = [
    "ContainerRuntime",
    "DockerCliRuntime",
    "InMemoryRuntime",
]
