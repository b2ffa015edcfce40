"""记录级访问判定。

`get_record_access` 按固定优先级逐步判定，命中第一条即返回：
对象读权限 -> 修改全部 -> 父记录控制 -> 公共读写 -> 所有者 -> 角色层级
-> 共享行 -> 公共只读 -> 查看全部 -> 无权限。
"""

from collections.abc import Iterable
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from crm_sharing.errors import PermissionDenied
from crm_sharing.models.enums import (
    AccessLevel,
    FieldAccessMode,
    OWDAccessLevel,
    RecordAction,
    ShareSubjectType,
    access_rank,
    max_access,
)
from crm_sharing.services.group_membership import get_user_group_ids
from crm_sharing.services.object_registry import get_object_descriptor
from crm_sharing.services.org_defaults import get_owd
from crm_sharing.services.permission_context import PermissionContext, get_permission_context
from crm_sharing.services.permissions import get_field_permissions, get_object_permissions
from crm_sharing.services.role_hierarchy import RoleTree, get_user_role_id

logger = logging.getLogger("crm_sharing.access")


def get_record_owner_id(db: Session, *, tenant_id: UUID, object_name: str, record_id: UUID) -> UUID | None:
    """查询未删除记录的所有者。"""
    record_model = get_object_descriptor(object_name).record_model
    return db.execute(
        select(record_model.owner_id)
        .where(record_model.tenant_id == tenant_id)
        .where(record_model.id == record_id)
        .where(record_model.is_deleted.is_(False))
    ).scalar_one_or_none()


def get_parent_record_access(
    db: Session,
    *,
    context: PermissionContext,
    object_name: str,
    record_id: UUID,
) -> AccessLevel:
    """ControlledByParent 对象：访问级别完全取决于父记录。

    对象未登记父对象、记录不存在或未关联父记录时返回 None。
    """
    descriptor = get_object_descriptor(object_name)
    if descriptor.parent is None:
        return AccessLevel.NONE

    record_model = descriptor.record_model
    parent_id = db.execute(
        select(getattr(record_model, descriptor.parent.parent_id_field))
        .where(record_model.tenant_id == context.tenant_id)
        .where(record_model.id == record_id)
        .where(record_model.is_deleted.is_(False))
    ).scalar_one_or_none()
    if parent_id is None:
        return AccessLevel.NONE

    return get_record_access(
        db,
        tenant_id=context.tenant_id,
        user_id=context.user_id,
        object_name=descriptor.parent.object_name,
        record_id=parent_id,
        context=context,
    )


def get_share_access(
    db: Session,
    *,
    context: PermissionContext,
    object_name: str,
    record_id: UUID,
    group_ids: Iterable[UUID] | None = None,
) -> AccessLevel:
    """取用户直接、所在角色或所属公共组命中的共享行中的最高访问级别。

    对象没有共享表时视为没有共享授权。
    """
    share_model = get_object_descriptor(object_name).share_model
    if share_model is None:
        return AccessLevel.NONE

    if group_ids is None:
        group_ids = get_user_group_ids(
            db,
            tenant_id=context.tenant_id,
            user_id=context.user_id,
            role_id=context.role_id,
        )
    group_ids = list(group_ids)

    subject_filters = [
        and_(
            share_model.subject_type == ShareSubjectType.USER.value,
            share_model.subject_id == context.user_id,
        )
    ]
    if context.role_id is not None:
        subject_filters.append(
            and_(
                share_model.subject_type == ShareSubjectType.ROLE.value,
                share_model.subject_id == context.role_id,
            )
        )
    if group_ids:
        subject_filters.append(
            and_(
                share_model.subject_type == ShareSubjectType.GROUP.value,
                share_model.subject_id.in_(group_ids),
            )
        )

    levels = (
        db.execute(
            select(share_model.access_level)
            .where(share_model.tenant_id == context.tenant_id)
            .where(share_model.record_id == record_id)
            .where(share_model.is_deleted.is_(False))
            .where(or_(*subject_filters))
        )
        .scalars()
        .all()
    )
    return max_access(*levels)


def get_record_access(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    object_name: str,
    record_id: UUID,
    context: PermissionContext | None = None,
) -> AccessLevel:
    """返回用户对单条记录的访问级别（None / Read / ReadWrite）。"""
    ctx = context or get_permission_context(db, tenant_id=tenant_id, user_id=user_id)
    permissions = get_object_permissions(
        db, tenant_id=tenant_id, user_id=user_id, object_name=object_name, context=ctx
    )

    if not permissions.can_read:
        return AccessLevel.NONE
    if permissions.modify_all:
        return AccessLevel.READ_WRITE

    owd = get_owd(db, tenant_id=tenant_id, object_name=object_name)
    if owd.internal_access == OWDAccessLevel.CONTROLLED_BY_PARENT:
        return get_parent_record_access(db, context=ctx, object_name=object_name, record_id=record_id)
    if owd.internal_access == OWDAccessLevel.PUBLIC_READ_WRITE:
        return AccessLevel.READ_WRITE

    owner_id = get_record_owner_id(db, tenant_id=tenant_id, object_name=object_name, record_id=record_id)
    if owner_id is None:
        return AccessLevel.NONE
    if owner_id == user_id:
        return AccessLevel.READ_WRITE

    if owd.grant_access_using_hierarchies and ctx.role_id is not None:
        owner_role_id = get_user_role_id(db, tenant_id=tenant_id, user_id=owner_id)
        if owner_role_id is not None:
            if RoleTree.load(db, tenant_id=tenant_id).is_ancestor(ctx.role_id, owner_role_id):
                return AccessLevel.READ_WRITE

    shared = get_share_access(db, context=ctx, object_name=object_name, record_id=record_id)
    if shared != AccessLevel.NONE:
        return shared

    if owd.internal_access == OWDAccessLevel.PUBLIC_READ_ONLY:
        return AccessLevel.READ
    if permissions.view_all:
        return AccessLevel.READ
    return AccessLevel.NONE


def can_perform_action(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    object_name: str,
    action: RecordAction,
    record_id: UUID | None = None,
) -> bool:
    """判断用户能否对对象（或具体记录）执行指定动作。

    create 只看对象级创建权限；其他动作先看对应对象权限，指定记录时再要求
    read 记录可见、update/delete 记录访问级别为 ReadWrite。
    """
    action = RecordAction(action)
    ctx = get_permission_context(db, tenant_id=tenant_id, user_id=user_id)
    permissions = get_object_permissions(
        db, tenant_id=tenant_id, user_id=user_id, object_name=object_name, context=ctx
    )
    if action == RecordAction.CREATE:
        return permissions.can_create
    if not permissions.allows(action):
        return False
    if record_id is None:
        return True

    access = get_record_access(
        db, tenant_id=tenant_id, user_id=user_id, object_name=object_name, record_id=record_id, context=ctx
    )
    if action == RecordAction.READ:
        return access != AccessLevel.NONE
    return access == AccessLevel.READ_WRITE


def filter_accessible_records(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    object_name: str,
    record_ids: Iterable[UUID],
    required_access: AccessLevel = AccessLevel.READ,
) -> list[UUID]:
    """逐条判定并保留满足访问要求的记录 ID，保持输入顺序并去重。"""
    ctx = get_permission_context(db, tenant_id=tenant_id, user_id=user_id)
    required_rank = access_rank(required_access)
    accessible: list[UUID] = []
    for record_id in dict.fromkeys(record_ids):
        level = get_record_access(
            db, tenant_id=tenant_id, user_id=user_id, object_name=object_name, record_id=record_id, context=ctx
        )
        if access_rank(level) >= required_rank and level != AccessLevel.NONE:
            accessible.append(record_id)
    return accessible


def apply_field_security(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    object_name: str,
    record: dict[str, Any],
    mode: FieldAccessMode = FieldAccessMode.READ,
) -> dict[str, Any]:
    """按字段权限返回脱敏后的记录副本。

    只处理显式配置了字段权限的字段：read 模式置空不可读字段，
    edit 模式置空不可编辑字段；未配置字段保持原值。
    """
    mode = FieldAccessMode(mode)
    permissions = get_field_permissions(
        db,
        tenant_id=tenant_id,
        user_id=user_id,
        object_name=object_name,
        field_names=record.keys(),
    )
    secured = dict(record)
    for field_name, permission in permissions.items():
        if field_name in secured and not permission.allows(mode):
            secured[field_name] = None
    return secured


def require_record_access(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    object_name: str,
    record_id: UUID,
    required_access: AccessLevel = AccessLevel.READ,
) -> AccessLevel:
    """校验记录访问级别，不满足时抛出 PermissionDenied。"""
    level = get_record_access(
        db, tenant_id=tenant_id, user_id=user_id, object_name=object_name, record_id=record_id
    )
    if level == AccessLevel.NONE or access_rank(level) < access_rank(required_access):
        logger.info(
            "record access denied user_id=%s object=%s record_id=%s level=%s required=%s",
            user_id,
            object_name,
            record_id,
            level,
            required_access,
        )
        raise PermissionDenied(
            "insufficient access to record",
            object_name=object_name,
            record_id=str(record_id),
            required_access=str(required_access),
        )
    return level
