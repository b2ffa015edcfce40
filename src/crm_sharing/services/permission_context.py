"""权限上下文解析。"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_sharing.errors import UserNotFound
from crm_sharing.models.identity import User
from crm_sharing.models.permission import PermissionSet, UserPermissionSet


@dataclass(frozen=True)
class PermissionContext:
    """用户权限上下文：简档、角色与有效权限集。"""

    tenant_id: UUID
    user_id: UUID
    profile_id: UUID | None
    role_id: UUID | None
    permission_set_ids: tuple[UUID, ...]


def get_permission_context(db: Session, *, tenant_id: UUID, user_id: UUID) -> PermissionContext:
    """读取用户简档、角色和已分配且启用的权限集。

    用户不存在、已删除或已停用时抛出 UserNotFound。
    """
    user = db.execute(
        select(User)
        .where(User.tenant_id == tenant_id)
        .where(User.id == user_id)
        .where(User.is_active.is_(True))
        .where(User.is_deleted.is_(False))
    ).scalar_one_or_none()
    if user is None:
        raise UserNotFound(f"user not found: {user_id}", user_id=str(user_id))

    permission_set_ids = (
        db.execute(
            select(PermissionSet.id)
            .join(UserPermissionSet, UserPermissionSet.permission_set_id == PermissionSet.id)
            .where(UserPermissionSet.tenant_id == tenant_id)
            .where(UserPermissionSet.user_id == user_id)
            .where(PermissionSet.tenant_id == tenant_id)
            .where(PermissionSet.is_active.is_(True))
            .where(PermissionSet.is_deleted.is_(False))
        )
        .scalars()
        .all()
    )
    return PermissionContext(
        tenant_id=tenant_id,
        user_id=user_id,
        profile_id=user.profile_id,
        role_id=user.role_id,
        permission_set_ids=tuple(permission_set_ids),
    )
