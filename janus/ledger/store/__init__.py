from .filesystem import FilesystemLedgerStore
from .interface import LedgerStore

__all__ = ["FilesystemLedgerStore", "LedgerStore"]
