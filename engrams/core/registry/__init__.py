"""
Engram registry: trigger compilation, discovery and lazy materialization.

WHY THIS PACKAGE EXISTS:
Engrams are found on disk without running any git command, and known-but-absent
engrams are surfaced from the index so the host can name them before anything
is checked out. EngramManager is the public entry point for lifecycle operations.
"""

from engrams.core.registry.manager import EngramManager

__all__ = ["EngramManager"]
