"""taskgraph: dependency-aware task graph and progress tracking."""

from taskgraph.config import VERSION as __version__

__all__ = ["__version__"]
