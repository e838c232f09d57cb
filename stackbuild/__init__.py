"""Dependency-ordered package builds against an incremental local repository."""

from .config import RunConfig, load_config
from .graph import DependencyGraph
from .pipeline import BuildPipeline
from .repository import IncrementalRepository

__all__ = ["BuildPipeline", "DependencyGraph", "IncrementalRepository", "RunConfig", "load_config"]
