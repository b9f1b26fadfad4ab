"""
HRIS Core - Permission Gate

Boolean RBAC check over the validated permission table. O(1) lookups and
no side effects, so it can be called freely per request.
"""

import logging
from typing import Optional

from hris_core.config import settings
from hris_core.models.directory import Role
from hris_core.services.org_directory import Actor
from hris_core.utils.error_handling import InsufficientPermissionsException
from hris_core.utils.permissions import (
    Permission,
    PermissionTable,
    ResourceKind,
    build_permission_table,
)

logger = logging.getLogger(__name__)


class PermissionGate:
    """Answers can(actor, resource, permission)."""
    
    def __init__(
        self,
        table: Optional[PermissionTable] = None,
        rbac_enabled: Optional[bool] = None,
        super_admin_role: Optional[Role] = None,
    ):
        self.table = table if table is not None else build_permission_table(settings.permission_overrides)
        self.rbac_enabled = settings.rbac_enabled if rbac_enabled is None else rbac_enabled
        self.super_admin_role = super_admin_role or Role(settings.super_admin_role)
    
    def can(
        self,
        actor: Optional[Actor],
        resource: ResourceKind,
        permission: Permission,
    ) -> bool:
        if not self.rbac_enabled:
            return True
        if actor is None:
            return False
        if actor.role == self.super_admin_role:
            return True
        
        granted = self.table.get(actor.role, {}).get(resource)
        if not granted:
            return False
        
        # Any capability on a resource lets the holder see it
        if permission == Permission.VIEW:
            return True
        if Permission.MANAGE in granted:
            return True
        return permission in granted
    
    def require(
        self,
        actor: Optional[Actor],
        resource: ResourceKind,
        permission: Permission,
    ) -> None:
        """Raise InsufficientPermissionsException unless can() allows."""
        if not self.can(actor, resource, permission):
            role = actor.role.value if actor else None
            logger.warning(
                f"Permission denied: {role} lacks {permission.value} on {resource.value}"
            )
            raise InsufficientPermissionsException(
                f"{resource.value}:{permission.value}",
                user_role=role,
            )
    
    def permissions_for(self, actor: Actor, resource: ResourceKind) -> set:
        """Effective permissions of the actor on a resource, with MANAGE expanded."""
        return {p for p in Permission if self.can(actor, resource, p)}
