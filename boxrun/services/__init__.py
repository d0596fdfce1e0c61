"""
Services package for boxrun.

Persistence around the execution core: command history and the predefined
command catalog.
"""
from .catalog import CommandCatalog, CommandCatalogError
from .history import CommandHistory, HistoryItem

__all__ = [
    "CommandCatalog",
    "CommandCatalogError",
    "CommandHistory",
    "HistoryItem",
]
