"""CloudStore adapters for persisting assembled volumes."""
from .drive import DriveClient
from .local import LocalDirectoryStore

__all__ = ["DriveClient", "LocalDirectoryStore"]
