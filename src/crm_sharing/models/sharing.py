"""组织级默认、共享规则、公共组与共享行模型。"""

from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, String, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from crm_sharing.models.base import Base, SoftDeleteMixin, TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin
from crm_sharing.models.enums import AccessLevel, OWDAccessLevel

# PostgreSQL 下使用 JSONB，其他方言回退为通用 JSON。
JSONType = JSON().with_variant(JSONB(), "postgresql")


class OrgWideDefault(Base, UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin):
    """对象级组织默认访问策略，每个租户每个对象一行。"""

    __tablename__ = "org_wide_defaults"
    __table_args__ = (UniqueConstraint("tenant_id", "object_name", name="uk_org_wide_default"),)

    object_name: Mapped[str] = mapped_column(String(64), nullable=False)
    # 内部用户默认访问级别。
    internal_access: Mapped[str] = mapped_column(String(32), nullable=False, default=OWDAccessLevel.PRIVATE)
    # 外部用户默认访问级别。
    external_access: Mapped[str] = mapped_column(String(32), nullable=False, default=OWDAccessLevel.PRIVATE)
    # 是否允许角色层级上级继承下级记录访问。
    grant_access_using_hierarchies: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SharingRule(Base, UUIDPrimaryKeyMixin, TenantMixin, SoftDeleteMixin, TimestampMixin):
    """共享规则。

    说明：
    1. OwnerBased 规则按 source_type/source_id 判定记录所有者是否落在来源人群。
    2. CriteriaBased 规则按 filter_criteria 做字段等值匹配。
    3. 两类规则都把 access_level 授予 target_type/target_id。
    """

    __tablename__ = "sharing_rules"

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    object_name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    rule_type: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    source_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    source_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    access_level: Mapped[str] = mapped_column(String(16), nullable=False, default=AccessLevel.READ)
    # 字段条件：值为标量表示等值，None 表示为空，列表表示集合包含。
    filter_criteria: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)


class PublicGroup(Base, UUIDPrimaryKeyMixin, TenantMixin, SoftDeleteMixin, TimestampMixin):
    """公共组。"""

    __tablename__ = "public_groups"

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)


class PublicGroupMember(Base, UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin):
    """公共组成员，成员类型为 Group 时形成嵌套组。"""

    __tablename__ = "public_group_members"
    __table_args__ = (
        UniqueConstraint("tenant_id", "group_id", "member_type", "member_id", name="uk_public_group_member"),
    )

    group_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    member_type: Mapped[str] = mapped_column(String(32), nullable=False)
    member_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)


class ShareMixin(UUIDPrimaryKeyMixin, TenantMixin, SoftDeleteMixin, TimestampMixin):
    """共享行公共字段。

    同一 (tenant_id, record_id, subject_type, subject_id, row_cause) 最多一行；
    重算只做 upsert 与逻辑删除，因此可以安全重试。
    """

    record_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    subject_type: Mapped[str] = mapped_column(String(16), nullable=False)
    subject_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    access_level: Mapped[str] = mapped_column(String(16), nullable=False)
    row_cause: Mapped[str] = mapped_column(String(32), nullable=False)
    # 由规则派生时记录规则 ID，便于按规则整体回收。
    sharing_rule_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    created_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)


def _share_key(table_name: str) -> UniqueConstraint:
    return UniqueConstraint(
        "tenant_id", "record_id", "subject_type", "subject_id", "row_cause", name=f"uk_{table_name}_subject_cause"
    )


class AccountShare(Base, ShareMixin):
    """客户共享行。"""

    __tablename__ = "account_shares"
    __table_args__ = (_share_key("account_shares"),)


class OpportunityShare(Base, ShareMixin):
    """商机共享行。"""

    __tablename__ = "opportunity_shares"
    __table_args__ = (_share_key("opportunity_shares"),)


class LeadShare(Base, ShareMixin):
    """线索共享行。"""

    __tablename__ = "lead_shares"
    __table_args__ = (_share_key("lead_shares"),)


class ContractShare(Base, ShareMixin):
    """合同共享行。"""

    __tablename__ = "contract_shares"
    __table_args__ = (_share_key("contract_shares"),)


class InvoiceShare(Base, ShareMixin):
    """发票共享行。"""

    __tablename__ = "invoice_shares"
    __table_args__ = (_share_key("invoice_shares"),)
