from .base import (
    ByteReader,
    EnvPolicy,
    ProcessBackend,
    ProcessHandle,
    SpawnOptions,
    get_backend,
    register_backend,
)
from .local import LocalProcessHandle, LocalSubprocessBackend

# Register backend under 'local'
register_backend("local", lambda: LocalSubprocessBackend())

__all__ = [
    "ByteReader",
    "EnvPolicy",
    "ProcessBackend",
    "ProcessHandle",
    "SpawnOptions",
    "get_backend",
    "register_backend",
    "LocalProcessHandle",
    "LocalSubprocessBackend",
]
