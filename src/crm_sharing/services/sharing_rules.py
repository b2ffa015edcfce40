"""共享规则引擎。

把基于所有者 / 基于条件的共享规则展开为 Rule 原因的共享行。
授权只会单调放宽，因此规则的应用顺序不影响最终结果。
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_sharing.errors import InvalidFilterCriteria, SharingEngineError
from crm_sharing.models.enums import RowCause, SharingRuleType
from crm_sharing.models.sharing import SharingRule
from crm_sharing.services.group_membership import ShareSubject, get_source_members, get_target_subjects
from crm_sharing.services.object_registry import get_object_descriptor, get_share_model
from crm_sharing.services.share_rows import upsert_share

logger = logging.getLogger("crm_sharing.rules")


@dataclass
class RuleExpansion:
    """规则来源人群与授权目标的展开结果，批量重算时只计算一次。"""

    source_members: set[UUID] | None
    targets: list[ShareSubject]


@dataclass
class RuleFailure:
    """单条规则在单条记录上的失败信息。"""

    rule_id: UUID
    record_id: UUID | None
    error: str


@dataclass
class RuleApplicationResult:
    """规则应用结果汇总。"""

    shares_written: int = 0
    failures: list[RuleFailure] = field(default_factory=list)


def expand_rule(db: Session, *, rule: SharingRule) -> RuleExpansion:
    """展开规则的来源人群（仅 OwnerBased）与授权目标。"""
    source_members = None
    if rule.rule_type == SharingRuleType.OWNER_BASED and rule.source_type and rule.source_id:
        source_members = get_source_members(
            db,
            tenant_id=rule.tenant_id,
            source_type=rule.source_type,
            source_id=rule.source_id,
        )
    targets = get_target_subjects(
        db,
        tenant_id=rule.tenant_id,
        target_type=rule.target_type,
        target_id=rule.target_id,
    )
    return RuleExpansion(source_members=source_members, targets=targets)


def _write_rule_shares(
    db: Session,
    *,
    rule: SharingRule,
    record_id: UUID,
    targets: list[ShareSubject],
    created_by: UUID | None,
) -> int:
    share_model = get_share_model(rule.object_name)
    for target in targets:
        upsert_share(
            db,
            share_model=share_model,
            tenant_id=rule.tenant_id,
            record_id=record_id,
            subject_type=target.subject_type,
            subject_id=target.subject_id,
            access_level=rule.access_level,
            row_cause=RowCause.RULE,
            sharing_rule_id=rule.id,
            created_by=created_by,
        )
    return len(targets)


def apply_owner_based_rule(
    db: Session,
    *,
    rule: SharingRule,
    record_id: UUID,
    owner_id: UUID,
    created_by: UUID | None = None,
    expansion: RuleExpansion | None = None,
) -> int:
    """记录所有者属于规则来源人群时，为每个目标主体写入共享行。"""
    if not rule.source_type or not rule.source_id:
        return 0
    expansion = expansion or expand_rule(db, rule=rule)
    if not expansion.source_members or owner_id not in expansion.source_members:
        return 0
    return _write_rule_shares(db, rule=rule, record_id=record_id, targets=expansion.targets, created_by=created_by)


def _values_equal(actual: Any, expected: Any) -> bool:
    if actual is None or expected is None:
        return actual is None and expected is None
    if isinstance(actual, UUID):
        return str(actual) == str(expected)
    if isinstance(actual, Decimal) and not isinstance(expected, bool):
        try:
            return actual == Decimal(str(expected))
        except InvalidOperation:
            return False
    return actual == expected


def record_matches_criteria(record: Any, criteria: Any) -> bool:
    """按字段条件匹配记录。

    条件值为标量时做等值比较，为 None 时要求字段为空，为列表时要求字段值在集合内。
    条件为空或不是映射时匹配所有记录。
    """
    if not criteria or not isinstance(criteria, dict):
        return True

    columns = record.__table__.columns
    for field_name, expected in criteria.items():
        if field_name not in columns:
            raise InvalidFilterCriteria(
                f"unknown field in filter criteria: {field_name}",
                field=field_name,
                table=record.__table__.name,
            )
        actual = getattr(record, field_name)
        if isinstance(expected, list):
            if not any(_values_equal(actual, item) for item in expected):
                return False
        elif not _values_equal(actual, expected):
            return False
    return True


def _load_record(db: Session, *, tenant_id: UUID, object_name: str, record_id: UUID):
    record_model = get_object_descriptor(object_name).record_model
    return db.execute(
        select(record_model)
        .where(record_model.tenant_id == tenant_id)
        .where(record_model.id == record_id)
        .where(record_model.is_deleted.is_(False))
    ).scalar_one_or_none()


def apply_criteria_based_rule(
    db: Session,
    *,
    rule: SharingRule,
    record_id: UUID,
    created_by: UUID | None = None,
    expansion: RuleExpansion | None = None,
    record: Any | None = None,
) -> int:
    """记录字段满足规则条件时，为每个目标主体写入共享行。"""
    if record is None:
        record = _load_record(db, tenant_id=rule.tenant_id, object_name=rule.object_name, record_id=record_id)
    if record is None or not record_matches_criteria(record, rule.filter_criteria):
        return 0
    expansion = expansion or expand_rule(db, rule=rule)
    return _write_rule_shares(db, rule=rule, record_id=record_id, targets=expansion.targets, created_by=created_by)


def apply_rule(
    db: Session,
    *,
    rule: SharingRule,
    record_id: UUID,
    owner_id: UUID,
    created_by: UUID | None = None,
    expansion: RuleExpansion | None = None,
    record: Any | None = None,
) -> int:
    """按规则类型分派。"""
    if rule.rule_type == SharingRuleType.OWNER_BASED:
        return apply_owner_based_rule(
            db, rule=rule, record_id=record_id, owner_id=owner_id, created_by=created_by, expansion=expansion
        )
    if rule.rule_type == SharingRuleType.CRITERIA_BASED:
        return apply_criteria_based_rule(
            db, rule=rule, record_id=record_id, created_by=created_by, expansion=expansion, record=record
        )
    logger.warning("skip sharing rule with unknown type rule_id=%s type=%s", rule.id, rule.rule_type)
    return 0


def list_active_rules(db: Session, *, tenant_id: UUID, object_name: str) -> list[SharingRule]:
    """查询对象上启用且未删除的共享规则。"""
    return list(
        db.execute(
            select(SharingRule)
            .where(SharingRule.tenant_id == tenant_id)
            .where(SharingRule.object_name == object_name)
            .where(SharingRule.is_active.is_(True))
            .where(SharingRule.is_deleted.is_(False))
            .order_by(SharingRule.created_at, SharingRule.id)
        )
        .scalars()
        .all()
    )


def apply_rules_to_record(
    db: Session,
    *,
    tenant_id: UUID,
    object_name: str,
    record_id: UUID,
    owner_id: UUID,
    created_by: UUID | None = None,
) -> RuleApplicationResult:
    """对单条记录应用对象上的全部启用规则。

    每条规则在独立保存点内执行，单条规则失败只回滚自身写入并记入结果，
    不影响其他规则。
    """
    result = RuleApplicationResult()
    for rule in list_active_rules(db, tenant_id=tenant_id, object_name=object_name):
        try:
            with db.begin_nested():
                result.shares_written += apply_rule(
                    db, rule=rule, record_id=record_id, owner_id=owner_id, created_by=created_by
                )
        except (SharingEngineError, SQLAlchemyError) as exc:
            logger.warning("sharing rule failed rule_id=%s record_id=%s error=%s", rule.id, record_id, exc)
            result.failures.append(RuleFailure(rule_id=rule.id, record_id=record_id, error=str(exc)))
    return result
