"""对象与字段权限合并。

简档提供基线，权限集只能追加授权（逐项 OR），从不收回简档已有的授权。
"""

from collections.abc import Iterable
from dataclasses import dataclass, fields
from functools import reduce
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_sharing.models.enums import FieldAccessMode, RecordAction
from crm_sharing.models.permission import (
    PermissionSetFieldPermission,
    PermissionSetObjectPermission,
    ProfileFieldPermission,
    ProfileObjectPermission,
)
from crm_sharing.services.permission_context import PermissionContext, get_permission_context


@dataclass(frozen=True)
class ObjectPermissions:
    """对象级有效权限。默认全部为 False。"""

    can_create: bool = False
    can_read: bool = False
    can_update: bool = False
    can_delete: bool = False
    view_all: bool = False
    modify_all: bool = False

    def __or__(self, other: "ObjectPermissions") -> "ObjectPermissions":
        return ObjectPermissions(
            **{item.name: getattr(self, item.name) or getattr(other, item.name) for item in fields(self)}
        )

    @classmethod
    def from_row(cls, row) -> "ObjectPermissions":
        return cls(
            can_create=bool(row.can_create),
            can_read=bool(row.can_read),
            can_update=bool(row.can_update),
            can_delete=bool(row.can_delete),
            view_all=bool(row.view_all),
            modify_all=bool(row.modify_all),
        )

    def allows(self, action: RecordAction) -> bool:
        """判断对象级 CRUD 标记是否允许指定动作。"""
        return {
            RecordAction.CREATE: self.can_create,
            RecordAction.READ: self.can_read,
            RecordAction.UPDATE: self.can_update,
            RecordAction.DELETE: self.can_delete,
        }[RecordAction(action)]


NO_OBJECT_PERMISSIONS = ObjectPermissions()


@dataclass(frozen=True)
class FieldPermission:
    """单字段有效权限。"""

    field_name: str
    is_readable: bool
    is_editable: bool

    def __or__(self, other: "FieldPermission") -> "FieldPermission":
        return FieldPermission(
            field_name=self.field_name,
            is_readable=self.is_readable or other.is_readable,
            is_editable=self.is_editable or other.is_editable,
        )

    def allows(self, mode: FieldAccessMode) -> bool:
        return self.is_readable if FieldAccessMode(mode) == FieldAccessMode.READ else self.is_editable


def default_field_permission(field_name: str) -> FieldPermission:
    """未配置字段的默认策略：可读、不可编辑。"""
    return FieldPermission(field_name=field_name, is_readable=True, is_editable=False)


def merge_object_permissions(sources: Iterable[ObjectPermissions]) -> ObjectPermissions:
    """按 OR 折叠多个权限来源。"""
    return reduce(lambda acc, item: acc | item, sources, NO_OBJECT_PERMISSIONS)


def get_object_permissions(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    object_name: str,
    context: PermissionContext | None = None,
) -> ObjectPermissions:
    """返回用户在对象上的有效权限（简档 + 权限集）。

    合并规则：
    1. 从全 False 开始。
    2. 简档有该对象的权限行时，以该行为基线；没有则保持 False。
    3. 每个启用且未删除的权限集逐项 OR 叠加。
    """
    ctx = context or get_permission_context(db, tenant_id=tenant_id, user_id=user_id)

    sources: list[ObjectPermissions] = []
    if ctx.profile_id is not None:
        profile_row = db.execute(
            select(ProfileObjectPermission)
            .where(ProfileObjectPermission.tenant_id == tenant_id)
            .where(ProfileObjectPermission.profile_id == ctx.profile_id)
            .where(ProfileObjectPermission.object_name == object_name)
        ).scalar_one_or_none()
        if profile_row is not None:
            sources.append(ObjectPermissions.from_row(profile_row))

    if ctx.permission_set_ids:
        rows = (
            db.execute(
                select(PermissionSetObjectPermission)
                .where(PermissionSetObjectPermission.tenant_id == tenant_id)
                .where(PermissionSetObjectPermission.permission_set_id.in_(ctx.permission_set_ids))
                .where(PermissionSetObjectPermission.object_name == object_name)
            )
            .scalars()
            .all()
        )
        sources.extend(ObjectPermissions.from_row(row) for row in rows)

    return merge_object_permissions(sources)


def get_field_permissions(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    object_name: str,
    field_names: Iterable[str] | None = None,
    context: PermissionContext | None = None,
) -> dict[str, FieldPermission]:
    """返回显式配置过的字段权限映射。

    未出现在结果中的字段采用默认策略，见 `resolve_field_permission`。
    """
    ctx = context or get_permission_context(db, tenant_id=tenant_id, user_id=user_id)
    names = sorted(set(field_names)) if field_names is not None else None

    merged: dict[str, FieldPermission] = {}

    if ctx.profile_id is not None:
        stmt = (
            select(ProfileFieldPermission)
            .where(ProfileFieldPermission.tenant_id == tenant_id)
            .where(ProfileFieldPermission.profile_id == ctx.profile_id)
            .where(ProfileFieldPermission.object_name == object_name)
        )
        if names:
            stmt = stmt.where(ProfileFieldPermission.field_name.in_(names))
        for row in db.execute(stmt).scalars().all():
            merged[row.field_name] = FieldPermission(row.field_name, bool(row.is_readable), bool(row.is_editable))

    if ctx.permission_set_ids:
        stmt = (
            select(PermissionSetFieldPermission)
            .where(PermissionSetFieldPermission.tenant_id == tenant_id)
            .where(PermissionSetFieldPermission.permission_set_id.in_(ctx.permission_set_ids))
            .where(PermissionSetFieldPermission.object_name == object_name)
        )
        if names:
            stmt = stmt.where(PermissionSetFieldPermission.field_name.in_(names))
        for row in db.execute(stmt).scalars().all():
            granted = FieldPermission(row.field_name, bool(row.is_readable), bool(row.is_editable))
            existing = merged.get(row.field_name)
            merged[row.field_name] = existing | granted if existing else granted

    return merged


def resolve_field_permission(permissions: dict[str, FieldPermission], field_name: str) -> FieldPermission:
    """取字段有效权限，未配置时回退默认策略。"""
    return permissions.get(field_name) or default_field_permission(field_name)


def has_field_permission(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    object_name: str,
    field_name: str,
    mode: FieldAccessMode = FieldAccessMode.READ,
) -> bool:
    """判断用户对单个字段是否具备读/编辑权限。"""
    permissions = get_field_permissions(
        db,
        tenant_id=tenant_id,
        user_id=user_id,
        object_name=object_name,
        field_names=[field_name],
    )
    return resolve_field_permission(permissions, field_name).allows(mode)
