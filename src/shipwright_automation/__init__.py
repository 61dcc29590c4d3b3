"""Shipwright artifact deployment toolkit."""

from .runner import TaskRunner
from .inventory import InventoryLoader
from .playbook import PlaybookLoader

__all__ = ["TaskRunner", "InventoryLoader", "PlaybookLoader"]
