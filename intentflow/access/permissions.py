"""Permission resolution for workspace and project scoped actions.

The validator only depends on the ``PermissionResolver`` protocol. The
membership-based resolver below is the reference implementation: roles are
granted per workspace and per project, and a project role takes precedence
over the workspace role when the resource belongs to projects.
"""
from enum import Enum
from typing import Literal, Protocol, runtime_checkable
import asyncio
import structlog
from pydantic import BaseModel

log = structlog.get_logger()


class Capability(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    MANAGE = "manage"
    INVITE = "invite"


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.OWNER: frozenset(Capability),
    Role.ADMIN: frozenset({Capability.READ, Capability.WRITE, Capability.MANAGE, Capability.INVITE}),
    Role.EDITOR: frozenset({Capability.READ, Capability.WRITE}),
    Role.VIEWER: frozenset({Capability.READ}),
}


def minimum_role(capability: Capability) -> Role:
    """Least privileged role that holds ``capability``."""
    for role in (Role.VIEWER, Role.EDITOR, Role.ADMIN, Role.OWNER):
        if capability in ROLE_CAPABILITIES[role]:
            return role
    return Role.OWNER


class PermissionResult(BaseModel):
    allowed: bool
    role: Role | None = None
    reason: str | None = None
    context: Literal["workspace", "project"] | None = None


@runtime_checkable
class PermissionResolver(Protocol):
    async def verify_permission(
        self,
        user_id: str,
        workspace_id: str,
        project_ids: list[str] | None,
        capability: Capability,
    ) -> PermissionResult:
        ...


class MembershipPermissionResolver:
    """In-memory resolver over explicit workspace and project memberships."""

    def __init__(self):
        self._workspace_roles: dict[tuple[str, str], Role] = {}
        self._project_roles: dict[tuple[str, str], Role] = {}
        self._lock = asyncio.Lock()

    async def add_workspace_member(self, workspace_id: str, user_id: str, role: Role | str):
        async with self._lock:
            self._workspace_roles[(workspace_id, user_id)] = Role(role)
        log.info("workspace.member_added", workspace_id=workspace_id, user_id=user_id, role=Role(role).value)

    async def remove_workspace_member(self, workspace_id: str, user_id: str):
        async with self._lock:
            self._workspace_roles.pop((workspace_id, user_id), None)

    async def add_project_member(self, project_id: str, user_id: str, role: Role | str):
        async with self._lock:
            self._project_roles[(project_id, user_id)] = Role(role)
        log.info("project.member_added", project_id=project_id, user_id=user_id, role=Role(role).value)

    async def verify_permission(
        self,
        user_id: str,
        workspace_id: str,
        project_ids: list[str] | None,
        capability: Capability,
    ) -> PermissionResult:
        """
        Three-level check: workspace membership, then project role, then
        workspace role.

        Args:
            user_id: Acting user
            workspace_id: Workspace the resource lives in
            project_ids: Projects the resource belongs to, if any
            capability: Capability the action needs

        Returns:
            PermissionResult describing the decision and the role that made it
        """
        workspace_role = self._workspace_roles.get((workspace_id, user_id))
        if workspace_role is None:
            return PermissionResult(allowed=False, reason="User is not a member of this workspace")

        if project_ids:
            project_roles = [
                self._project_roles[(pid, user_id)]
                for pid in project_ids
                if (pid, user_id) in self._project_roles
            ]
            if project_roles:
                # Any project that grants the capability is enough
                for role in project_roles:
                    if capability in ROLE_CAPABILITIES[role]:
                        return PermissionResult(allowed=True, role=role, context="project")
                return PermissionResult(
                    allowed=False,
                    role=project_roles[0],
                    reason=f"Insufficient project permissions (role: {project_roles[0].value})",
                    context="project",
                )
            if workspace_role is not Role.OWNER:
                return PermissionResult(
                    allowed=False,
                    role=workspace_role,
                    reason="User is not a member of any of the resource's projects",
                    context="project",
                )

        if capability in ROLE_CAPABILITIES[workspace_role]:
            return PermissionResult(allowed=True, role=workspace_role, context="workspace")

        return PermissionResult(
            allowed=False,
            role=workspace_role,
            reason=f"Insufficient workspace permissions (role: {workspace_role.value})",
            context="workspace",
        )
