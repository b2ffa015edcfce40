"""共享行物化服务。

负责 Owner / RoleHierarchy / Rule 三类派生共享行的创建与重算，以及手工共享的增删。
所有写入均为 upsert 与逻辑删除，不提交事务，由调用方统一提交。
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Protocol
from uuid import UUID

from sqlalchemy import case, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_sharing.core.config import get_settings
from crm_sharing.errors import InvalidShareRequest, RecordNotFound, SharingEngineError, SharingRuleNotFound
from crm_sharing.models.enums import AccessLevel, RowCause, ShareSubjectType
from crm_sharing.models.identity import Role, User
from crm_sharing.models.sharing import PublicGroup, SharingRule
from crm_sharing.services.object_registry import OBJECT_REGISTRY, get_object_descriptor, get_share_model
from crm_sharing.services.org_defaults import get_owd
from crm_sharing.services.role_hierarchy import RoleTree, get_user_role_id
from crm_sharing.services.share_rows import soft_delete_shares, upsert_share
from crm_sharing.services.sharing_rules import (
    RuleApplicationResult,
    RuleFailure,
    apply_rule,
    apply_rules_to_record,
    expand_rule,
)

logger = logging.getLogger("crm_sharing.sharing")

# 重算时会被整体替换的派生原因；Owner 与 Manual 行不在其中。
RECOMPUTED_CAUSES = (RowCause.RULE.value, RowCause.ROLE_HIERARCHY.value)

MANUAL_ACCESS_LEVELS = (AccessLevel.READ.value, AccessLevel.READ_WRITE.value)


class CancelEvent(Protocol):
    def is_set(self) -> bool: ...


@dataclass
class RecalculationReport:
    """规则重算批处理报告。"""

    rule_id: UUID
    processed: int = 0
    shares_written: int = 0
    failures: list[RuleFailure] = field(default_factory=list)
    cancelled: bool = False
    # 本次回收过规则共享行并已按记录重算的记录。
    affected_record_ids: list[UUID] = field(default_factory=list)


@dataclass(frozen=True)
class RecordShareView:
    """记录共享明细展示行。"""

    id: UUID
    subject_type: str
    subject_id: UUID
    subject_name: str | None
    access_level: str
    row_cause: str
    sharing_rule_id: UUID | None
    sharing_rule_name: str | None
    created_at: datetime | None


def _get_record_owner(db: Session, *, tenant_id: UUID, object_name: str, record_id: UUID) -> UUID:
    record_model = get_object_descriptor(object_name).record_model
    owner_id = db.execute(
        select(record_model.owner_id)
        .where(record_model.tenant_id == tenant_id)
        .where(record_model.id == record_id)
        .where(record_model.is_deleted.is_(False))
    ).scalar_one_or_none()
    if owner_id is None:
        raise RecordNotFound(
            f"{object_name} record not found: {record_id}",
            object_name=object_name,
            record_id=str(record_id),
        )
    return owner_id


def create_owner_share(
    db: Session,
    *,
    tenant_id: UUID,
    object_name: str,
    record_id: UUID,
    owner_id: UUID,
    created_by: UUID | None = None,
):
    """为记录所有者写入 Owner 共享行（ReadWrite）。"""
    return upsert_share(
        db,
        share_model=get_share_model(object_name),
        tenant_id=tenant_id,
        record_id=record_id,
        subject_type=ShareSubjectType.USER,
        subject_id=owner_id,
        access_level=AccessLevel.READ_WRITE,
        row_cause=RowCause.OWNER,
        created_by=created_by,
    )


def create_role_hierarchy_shares(
    db: Session,
    *,
    tenant_id: UUID,
    object_name: str,
    record_id: UUID,
    owner_id: UUID,
    created_by: UUID | None = None,
    role_tree: RoleTree | None = None,
) -> int:
    """为所有者角色的每个上级角色写入 RoleHierarchy 共享行。

    对象关闭了层级授权或所有者没有角色时不写入任何行。
    """
    share_model = get_share_model(object_name)
    if not get_owd(db, tenant_id=tenant_id, object_name=object_name).grant_access_using_hierarchies:
        return 0
    owner_role_id = get_user_role_id(db, tenant_id=tenant_id, user_id=owner_id, active_only=False)
    if owner_role_id is None:
        return 0

    tree = role_tree or RoleTree.load(db, tenant_id=tenant_id)
    ancestor_ids = tree.ancestors(owner_role_id)
    for role_id in ancestor_ids:
        upsert_share(
            db,
            share_model=share_model,
            tenant_id=tenant_id,
            record_id=record_id,
            subject_type=ShareSubjectType.ROLE,
            subject_id=role_id,
            access_level=AccessLevel.READ_WRITE,
            row_cause=RowCause.ROLE_HIERARCHY,
            created_by=created_by,
        )
    return len(ancestor_ids)


def calculate_new_record_shares(
    db: Session,
    *,
    tenant_id: UUID,
    object_name: str,
    record_id: UUID,
    owner_id: UUID,
    created_by: UUID | None = None,
) -> RuleApplicationResult:
    """新建记录后计算全部派生共享行：所有者、角色层级与共享规则。"""
    create_owner_share(
        db,
        tenant_id=tenant_id,
        object_name=object_name,
        record_id=record_id,
        owner_id=owner_id,
        created_by=created_by,
    )
    hierarchy_count = create_role_hierarchy_shares(
        db,
        tenant_id=tenant_id,
        object_name=object_name,
        record_id=record_id,
        owner_id=owner_id,
        created_by=created_by,
    )
    result = apply_rules_to_record(
        db,
        tenant_id=tenant_id,
        object_name=object_name,
        record_id=record_id,
        owner_id=owner_id,
        created_by=created_by,
    )
    result.shares_written += 1 + hierarchy_count
    logger.info(
        "record shares calculated object=%s record_id=%s shares=%s failures=%s",
        object_name,
        record_id,
        result.shares_written,
        len(result.failures),
    )
    return result


def recalculate_record_shares(
    db: Session,
    *,
    tenant_id: UUID,
    object_name: str,
    record_id: UUID,
    owner_id: UUID | None = None,
    created_by: UUID | None = None,
) -> RuleApplicationResult:
    """重算单条记录的 RoleHierarchy 与 Rule 共享行。

    先逻辑删除这两类行，再按当前层级与规则重新生成；Owner 与 Manual 行保持不变。
    未传入 owner_id 时从记录表读取。
    """
    share_model = get_share_model(object_name)
    if owner_id is None:
        owner_id = _get_record_owner(db, tenant_id=tenant_id, object_name=object_name, record_id=record_id)

    removed = soft_delete_shares(
        db,
        share_model=share_model,
        tenant_id=tenant_id,
        conditions=[share_model.record_id == record_id, share_model.row_cause.in_(RECOMPUTED_CAUSES)],
    )
    hierarchy_count = create_role_hierarchy_shares(
        db,
        tenant_id=tenant_id,
        object_name=object_name,
        record_id=record_id,
        owner_id=owner_id,
        created_by=created_by,
    )
    result = apply_rules_to_record(
        db,
        tenant_id=tenant_id,
        object_name=object_name,
        record_id=record_id,
        owner_id=owner_id,
        created_by=created_by,
    )
    result.shares_written += hierarchy_count
    logger.info(
        "record shares recalculated object=%s record_id=%s removed=%s written=%s failures=%s",
        object_name,
        record_id,
        removed,
        result.shares_written,
        len(result.failures),
    )
    return result


def update_owner_share(
    db: Session,
    *,
    tenant_id: UUID,
    object_name: str,
    record_id: UUID,
    old_owner_id: UUID | None,
    new_owner_id: UUID,
    created_by: UUID | None = None,
) -> RuleApplicationResult:
    """记录所有者变更：替换 Owner 行并整体重算层级与规则共享。"""
    share_model = get_share_model(object_name)
    if old_owner_id is not None and old_owner_id != new_owner_id:
        soft_delete_shares(
            db,
            share_model=share_model,
            tenant_id=tenant_id,
            conditions=[
                share_model.record_id == record_id,
                share_model.row_cause == RowCause.OWNER.value,
                share_model.subject_type == ShareSubjectType.USER.value,
                share_model.subject_id == old_owner_id,
            ],
        )
    create_owner_share(
        db,
        tenant_id=tenant_id,
        object_name=object_name,
        record_id=record_id,
        owner_id=new_owner_id,
        created_by=created_by,
    )
    logger.info(
        "record owner changed object=%s record_id=%s old_owner=%s new_owner=%s",
        object_name,
        record_id,
        old_owner_id,
        new_owner_id,
    )
    return recalculate_record_shares(
        db,
        tenant_id=tenant_id,
        object_name=object_name,
        record_id=record_id,
        owner_id=new_owner_id,
        created_by=created_by,
    )


def _release_rule_shares(db: Session, *, tenant_id: UUID, rule_id: UUID) -> list[tuple[str, UUID]]:
    """逻辑删除所有对象共享表中带有该规则标记的行，返回涉及的 (对象, 记录)。"""
    affected: list[tuple[str, UUID]] = []
    for object_name, descriptor in OBJECT_REGISTRY.items():
        share_model = descriptor.share_model
        if share_model is None:
            continue
        conditions = [share_model.sharing_rule_id == rule_id]
        record_ids = (
            db.execute(
                select(share_model.record_id)
                .distinct()
                .where(share_model.tenant_id == tenant_id)
                .where(share_model.is_deleted.is_(False))
                .where(*conditions)
                .order_by(share_model.record_id)
            )
            .scalars()
            .all()
        )
        affected.extend((object_name, record_id) for record_id in record_ids)
        soft_delete_shares(db, share_model=share_model, tenant_id=tenant_id, conditions=conditions)
    return affected


def _rebuild_released_records(
    db: Session,
    *,
    tenant_id: UUID,
    rule_id: UUID,
    released: list[tuple[str, UUID]],
    report: RecalculationReport,
    cancel_event: CancelEvent | None,
    created_by: UUID | None,
) -> None:
    """按记录重算被回收过规则行的记录，恢复其他仍生效规则的授权。

    同一 (记录, 主体) 的 Rule 行由多条规则共用，回收后必须整体重算才能与规则执行顺序无关。
    """
    for object_name, record_id in released:
        if cancel_event is not None and cancel_event.is_set():
            report.cancelled = True
            return
        try:
            with db.begin_nested():
                result = recalculate_record_shares(
                    db,
                    tenant_id=tenant_id,
                    object_name=object_name,
                    record_id=record_id,
                    created_by=created_by,
                )
        except (SharingEngineError, SQLAlchemyError) as exc:
            logger.warning(
                "released record rebuild failed rule_id=%s record_id=%s error=%s", rule_id, record_id, exc
            )
            report.failures.append(RuleFailure(rule_id=rule_id, record_id=record_id, error=str(exc)))
            continue
        # 本规则自身的失败由后续逐记录应用阶段报告。
        report.failures.extend(item for item in result.failures if item.rule_id != rule_id)
        report.affected_record_ids.append(record_id)


def recalculate_rule_shares(
    db: Session,
    *,
    tenant_id: UUID,
    rule_id: UUID,
    cancel_event: CancelEvent | None = None,
    created_by: UUID | None = None,
) -> RecalculationReport:
    """规则定义变更后重算该规则的全部共享行。

    流程：
    1. 逻辑删除所有带该规则标记的共享行。
    2. 对涉及的记录逐条重算 RoleHierarchy 与 Rule 行，其他规则的授权由此恢复。
    3. 规则已停用或已删除时到此为止。
    4. 否则遍历对象下全部未删除记录重新应用规则，每条记录一个保存点，
       失败记录只回滚自身并写入报告。

    整个过程只做 upsert，因此中途失败或取消后可以从头重跑。
    """
    rule = db.execute(
        select(SharingRule).where(SharingRule.tenant_id == tenant_id).where(SharingRule.id == rule_id)
    ).scalar_one_or_none()
    if rule is None:
        raise SharingRuleNotFound(f"sharing rule not found: {rule_id}", rule_id=str(rule_id))

    record_model = get_object_descriptor(rule.object_name).record_model
    get_share_model(rule.object_name)

    report = RecalculationReport(rule_id=rule_id)
    released = _release_rule_shares(db, tenant_id=tenant_id, rule_id=rule_id)
    _rebuild_released_records(
        db,
        tenant_id=tenant_id,
        rule_id=rule_id,
        released=released,
        report=report,
        cancel_event=cancel_event,
        created_by=created_by,
    )
    if report.cancelled:
        logger.warning(
            "sharing rule recalculation cancelled while rebuilding rule_id=%s rebuilt=%s total=%s",
            rule_id,
            len(report.affected_record_ids),
            len(released),
        )
        return report

    if not rule.is_active or rule.is_deleted:
        logger.info(
            "sharing rule inactive, shares released rule_id=%s records=%s",
            rule_id,
            len(report.affected_record_ids),
        )
        return report

    try:
        expansion = expand_rule(db, rule=rule)
    except (SharingEngineError, SQLAlchemyError) as exc:
        logger.exception("sharing rule expansion failed rule_id=%s", rule_id)
        report.failures.append(RuleFailure(rule_id=rule_id, record_id=None, error=str(exc)))
        return report

    rows = db.execute(
        select(record_model.id, record_model.owner_id)
        .where(record_model.tenant_id == tenant_id)
        .where(record_model.is_deleted.is_(False))
        .order_by(record_model.id)
    ).all()

    log_every = max(1, get_settings().sharing_recalc_log_every)
    logger.info("sharing rule recalculation started rule_id=%s records=%s", rule_id, len(rows))
    for row in rows:
        if cancel_event is not None and cancel_event.is_set():
            report.cancelled = True
            logger.warning(
                "sharing rule recalculation cancelled rule_id=%s processed=%s total=%s",
                rule_id,
                report.processed,
                len(rows),
            )
            break
        try:
            with db.begin_nested():
                written = apply_rule(
                    db,
                    rule=rule,
                    record_id=row.id,
                    owner_id=row.owner_id,
                    created_by=created_by,
                    expansion=expansion,
                )
        except (SharingEngineError, SQLAlchemyError) as exc:
            logger.warning("sharing rule failed rule_id=%s record_id=%s error=%s", rule_id, row.id, exc)
            report.failures.append(RuleFailure(rule_id=rule_id, record_id=row.id, error=str(exc)))
        else:
            report.shares_written += written
        report.processed += 1
        if report.processed % log_every == 0:
            logger.info(
                "sharing rule recalculation progress rule_id=%s processed=%s total=%s",
                rule_id,
                report.processed,
                len(rows),
            )

    logger.info(
        "sharing rule recalculation finished rule_id=%s processed=%s written=%s failures=%s cancelled=%s",
        rule_id,
        report.processed,
        report.shares_written,
        len(report.failures),
        report.cancelled,
    )
    return report


def delete_record_shares(db: Session, *, tenant_id: UUID, object_name: str, record_id: UUID) -> int:
    """记录被删除时逻辑删除其全部共享行（任意原因）。"""
    share_model = get_share_model(object_name)
    removed = soft_delete_shares(
        db,
        share_model=share_model,
        tenant_id=tenant_id,
        conditions=[share_model.record_id == record_id],
    )
    logger.info("record shares deleted object=%s record_id=%s removed=%s", object_name, record_id, removed)
    return removed


def create_manual_share(
    db: Session,
    *,
    tenant_id: UUID,
    object_name: str,
    record_id: UUID,
    subject_type: str,
    subject_id: UUID,
    access_level: str,
    created_by: UUID | None = None,
):
    """创建手工共享；对同一主体重复共享时以新访问级别为准。"""
    if access_level not in MANUAL_ACCESS_LEVELS:
        raise InvalidShareRequest(
            "manual share access level must be Read or ReadWrite",
            access_level=access_level,
        )
    if subject_type not in {item.value for item in ShareSubjectType}:
        raise InvalidShareRequest("unsupported share subject type", subject_type=subject_type)

    share = upsert_share(
        db,
        share_model=get_share_model(object_name),
        tenant_id=tenant_id,
        record_id=record_id,
        subject_type=subject_type,
        subject_id=subject_id,
        access_level=access_level,
        row_cause=RowCause.MANUAL,
        created_by=created_by,
    )
    logger.info(
        "manual share saved object=%s record_id=%s subject=%s:%s access=%s",
        object_name,
        record_id,
        subject_type,
        subject_id,
        access_level,
    )
    return share


def delete_manual_share(
    db: Session,
    *,
    tenant_id: UUID,
    object_name: str,
    record_id: UUID,
    subject_type: str,
    subject_id: UUID,
) -> bool:
    """删除手工共享，返回是否确有行被删除。"""
    share_model = get_share_model(object_name)
    removed = soft_delete_shares(
        db,
        share_model=share_model,
        tenant_id=tenant_id,
        conditions=[
            share_model.record_id == record_id,
            share_model.subject_type == subject_type,
            share_model.subject_id == subject_id,
            share_model.row_cause == RowCause.MANUAL.value,
        ],
    )
    return removed > 0


def get_record_shares(db: Session, *, tenant_id: UUID, object_name: str, record_id: UUID) -> list[RecordShareView]:
    """查询记录的有效共享行及主体名称，供"谁有访问权"展示使用。

    排序：Owner、RoleHierarchy、Rule、Manual、Team、其他，同原因内按主体类型。
    """
    share_model = get_share_model(object_name)
    cause_order = case(
        (share_model.row_cause == RowCause.OWNER.value, 1),
        (share_model.row_cause == RowCause.ROLE_HIERARCHY.value, 2),
        (share_model.row_cause == RowCause.RULE.value, 3),
        (share_model.row_cause == RowCause.MANUAL.value, 4),
        (share_model.row_cause == RowCause.TEAM.value, 5),
        else_=6,
    )
    stmt = (
        select(
            share_model,
            User.display_name.label("user_name"),
            Role.name.label("role_name"),
            PublicGroup.name.label("group_name"),
            SharingRule.name.label("rule_name"),
        )
        .outerjoin(
            User,
            (share_model.subject_type == ShareSubjectType.USER.value)
            & (User.id == share_model.subject_id)
            & (User.tenant_id == share_model.tenant_id),
        )
        .outerjoin(
            Role,
            (share_model.subject_type == ShareSubjectType.ROLE.value)
            & (Role.id == share_model.subject_id)
            & (Role.tenant_id == share_model.tenant_id),
        )
        .outerjoin(
            PublicGroup,
            (share_model.subject_type == ShareSubjectType.GROUP.value)
            & (PublicGroup.id == share_model.subject_id)
            & (PublicGroup.tenant_id == share_model.tenant_id),
        )
        .outerjoin(
            SharingRule,
            (SharingRule.id == share_model.sharing_rule_id) & (SharingRule.tenant_id == share_model.tenant_id),
        )
        .where(share_model.tenant_id == tenant_id)
        .where(share_model.record_id == record_id)
        .where(share_model.is_deleted.is_(False))
        .order_by(cause_order, share_model.subject_type, share_model.created_at)
    )

    views: list[RecordShareView] = []
    for share, user_name, role_name, group_name, rule_name in db.execute(stmt).all():
        subject_name = {
            ShareSubjectType.USER.value: user_name,
            ShareSubjectType.ROLE.value: role_name,
            ShareSubjectType.GROUP.value: group_name,
        }.get(share.subject_type)
        views.append(
            RecordShareView(
                id=share.id,
                subject_type=share.subject_type,
                subject_id=share.subject_id,
                subject_name=subject_name,
                access_level=share.access_level,
                row_cause=share.row_cause,
                sharing_rule_id=share.sharing_rule_id,
                sharing_rule_name=rule_name,
                created_at=share.created_at,
            )
        )
    return views
