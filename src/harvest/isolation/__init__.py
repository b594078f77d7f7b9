"""Workspace isolation over a SQLite-backed versioned main line."""

from harvest.isolation.manager import IsolationManager
from harvest.isolation.store import MAIN, BranchStore, Commit

__all__ = ["MAIN", "BranchStore", "Commit", "IsolationManager"]
