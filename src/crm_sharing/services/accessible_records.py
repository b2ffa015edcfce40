"""列表视图可访问记录过滤。

把逐条判定的规则折叠成一条作用在记录表上的 SQL 条件，列表查询一次完成过滤，
结果与 `get_record_access` 对每条记录的判定保持一致。
"""

from uuid import UUID

from sqlalchemy import and_, false, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from crm_sharing.models.enums import OWDAccessLevel, ShareSubjectType
from crm_sharing.models.identity import User
from crm_sharing.services.group_membership import get_user_group_ids
from crm_sharing.services.object_registry import get_object_descriptor
from crm_sharing.services.org_defaults import get_owd
from crm_sharing.services.permission_context import PermissionContext, get_permission_context
from crm_sharing.services.permissions import get_object_permissions
from crm_sharing.services.role_hierarchy import RoleTree

# 对所有记录至少可读、无需按记录过滤的 OWD。
_UNRESTRICTED_OWD = {OWDAccessLevel.PUBLIC_READ_WRITE, OWDAccessLevel.PUBLIC_READ_ONLY}


def accessible_records_clause(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    object_name: str,
    context: PermissionContext | None = None,
) -> ColumnElement[bool] | None:
    """返回记录表上的可访问过滤条件。

    返回值：
    1. `None` 表示不需要按记录过滤（查看全部、修改全部或公共可读）。
    2. `false()` 表示一条都不可见（无对象读权限）。
    3. 其余情况为所有者、下级角色所有者、共享行三者的 OR 组合。
    """
    ctx = context or get_permission_context(db, tenant_id=tenant_id, user_id=user_id)
    permissions = get_object_permissions(
        db, tenant_id=tenant_id, user_id=user_id, object_name=object_name, context=ctx
    )
    if not permissions.can_read:
        return false()
    if permissions.modify_all or permissions.view_all:
        return None

    descriptor = get_object_descriptor(object_name)
    record_model = descriptor.record_model
    owd = get_owd(db, tenant_id=tenant_id, object_name=object_name)

    if owd.internal_access == OWDAccessLevel.CONTROLLED_BY_PARENT:
        if descriptor.parent is None:
            return false()
        parent_model = get_object_descriptor(descriptor.parent.object_name).record_model
        parent_clause = accessible_records_clause(
            db,
            tenant_id=tenant_id,
            user_id=user_id,
            object_name=descriptor.parent.object_name,
            context=ctx,
        )
        parent_ids = (
            select(parent_model.id)
            .where(parent_model.tenant_id == tenant_id)
            .where(parent_model.is_deleted.is_(False))
        )
        if parent_clause is not None:
            parent_ids = parent_ids.where(parent_clause)
        return getattr(record_model, descriptor.parent.parent_id_field).in_(parent_ids)

    if owd.internal_access in _UNRESTRICTED_OWD:
        return None

    conditions: list[ColumnElement[bool]] = [record_model.owner_id == user_id]

    role_tree: RoleTree | None = None
    if ctx.role_id is not None:
        role_tree = RoleTree.load(db, tenant_id=tenant_id)
    if owd.grant_access_using_hierarchies and role_tree is not None:
        subordinate_role_ids = role_tree.subordinates(ctx.role_id)
        if subordinate_role_ids:
            conditions.append(
                record_model.owner_id.in_(
                    select(User.id)
                    .where(User.tenant_id == tenant_id)
                    .where(User.role_id.in_(subordinate_role_ids))
                    .where(User.is_active.is_(True))
                    .where(User.is_deleted.is_(False))
                )
            )

    share_model = descriptor.share_model
    if share_model is not None:
        group_ids = get_user_group_ids(
            db, tenant_id=tenant_id, user_id=user_id, role_id=ctx.role_id, role_tree=role_tree
        )
        subject_filters = [
            and_(
                share_model.subject_type == ShareSubjectType.USER.value,
                share_model.subject_id == user_id,
            )
        ]
        if ctx.role_id is not None:
            subject_filters.append(
                and_(
                    share_model.subject_type == ShareSubjectType.ROLE.value,
                    share_model.subject_id == ctx.role_id,
                )
            )
        if group_ids:
            subject_filters.append(
                and_(
                    share_model.subject_type == ShareSubjectType.GROUP.value,
                    share_model.subject_id.in_(group_ids),
                )
            )
        conditions.append(
            record_model.id.in_(
                select(share_model.record_id)
                .where(share_model.tenant_id == tenant_id)
                .where(share_model.is_deleted.is_(False))
                .where(or_(*subject_filters))
            )
        )

    return or_(*conditions)


def list_accessible_record_ids(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    object_name: str,
    limit: int | None = None,
) -> list[UUID]:
    """按过滤条件一次查询用户可访问的记录 ID。"""
    record_model = get_object_descriptor(object_name).record_model
    stmt = (
        select(record_model.id)
        .where(record_model.tenant_id == tenant_id)
        .where(record_model.is_deleted.is_(False))
        .order_by(record_model.id)
    )
    clause = accessible_records_clause(db, tenant_id=tenant_id, user_id=user_id, object_name=object_name)
    if clause is not None:
        stmt = stmt.where(clause)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())
