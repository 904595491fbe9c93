"""Access control collaborators: permission resolution and workspace settings."""
from .permissions import (
    Capability,
    MembershipPermissionResolver,
    PermissionResolver,
    PermissionResult,
    Role,
)
from .workspaces import InMemoryWorkspaceSettingsStore, WorkspaceSettingsStore

__all__ = [
    "Capability",
    "Role",
    "PermissionResult",
    "PermissionResolver",
    "MembershipPermissionResolver",
    "WorkspaceSettingsStore",
    "InMemoryWorkspaceSettingsStore",
]
