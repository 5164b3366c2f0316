"""Sync engine between the local show database and the hosted myK9Q store."""

from .errors import LicenseError, RemoteError, SyncAborted, SyncError
from .guard import ProtectedAction, ProtectionPrompt, fixed_chooser
from .local_store import LocalStore
from .models import SyncScope
from .remote import RemoteClient
from .sync import SyncOrchestrator, SyncReport

__all__ = [
    "LicenseError",
    "LocalStore",
    "ProtectedAction",
    "ProtectionPrompt",
    "RemoteClient",
    "RemoteError",
    "SyncAborted",
    "SyncError",
    "SyncOrchestrator",
    "SyncReport",
    "SyncScope",
    "fixed_chooser",
]
