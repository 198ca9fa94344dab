"""Privileged command execution."""
from __future__ import annotations

from .adapter import DEBUG_PREFIX, CommandExecutor, CommandHandle, RunningCommand
from .backends import RootShellBackend, SuBinaryBackend, detect_backend
from .base import (
    BackendResult,
    ChunkKind,
    CommandResult,
    ExecutionBackend,
    ExecutionCallbacks,
    OutputChunk,
)

__all__ = [
    "BackendResult",
    "ChunkKind",
    "CommandExecutor",
    "CommandHandle",
    "CommandResult",
    "DEBUG_PREFIX",
    "ExecutionBackend",
    "ExecutionCallbacks",
    "OutputChunk",
    "RootShellBackend",
    "RunningCommand",
    "SuBinaryBackend",
    "detect_backend",
]
