"""共享行写入原语。

所有写入都是 upsert：同一 (租户, 记录, 主体类型, 主体, 原因) 只保留一行，
重复写入不会产生新行，规则派生的行只升不降，失败后重试是安全的。
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from crm_sharing.models.enums import RowCause, access_rank


def upsert_share(
    db: Session,
    *,
    share_model: type,
    tenant_id: UUID,
    record_id: UUID,
    subject_type: str,
    subject_id: UUID,
    access_level: str,
    row_cause: str,
    sharing_rule_id: UUID | None = None,
    created_by: UUID | None = None,
):
    """写入或更新一条共享行。

    冲突处理：
    1. 已逻辑删除的行被恢复，访问级别以本次写入为准。
    2. Rule 原因的有效行取新旧访问级别的最大值。只有本次级别不低于已存级别时才改记规则标记，
       因此标记总是指向一条确实授予当前级别的规则。
    3. 其他原因（Owner/RoleHierarchy/Manual）直接覆盖访问级别。
    """
    share = db.execute(
        select(share_model)
        .where(share_model.tenant_id == tenant_id)
        .where(share_model.record_id == record_id)
        .where(share_model.subject_type == subject_type)
        .where(share_model.subject_id == subject_id)
        .where(share_model.row_cause == row_cause)
    ).scalar_one_or_none()

    if share is None:
        share = share_model(
            tenant_id=tenant_id,
            record_id=record_id,
            subject_type=subject_type,
            subject_id=subject_id,
            access_level=access_level,
            row_cause=row_cause,
            sharing_rule_id=sharing_rule_id,
            created_by=created_by,
            is_deleted=False,
        )
        db.add(share)
        db.flush()
        return share

    if share.is_deleted:
        share.is_deleted = False
        share.access_level = access_level
        share.sharing_rule_id = sharing_rule_id
    elif row_cause == RowCause.RULE:
        if access_rank(access_level) >= access_rank(share.access_level):
            share.access_level = access_level
            share.sharing_rule_id = sharing_rule_id
    else:
        share.access_level = access_level
        share.sharing_rule_id = sharing_rule_id
    db.flush()
    return share


def soft_delete_shares(db: Session, *, share_model: type, tenant_id: UUID, conditions: list) -> int:
    """按条件逻辑删除有效共享行，返回受影响行数。"""
    result = db.execute(
        update(share_model)
        .where(share_model.tenant_id == tenant_id)
        .where(share_model.is_deleted.is_(False))
        .where(*conditions)
        .values(is_deleted=True)
    )
    return result.rowcount or 0
