"""业务记录模型。

业务对象的增删改由外部仓储负责，这里只声明共享计算需要读取的列：
所有者、父记录引用以及共享规则常用的过滤字段。
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crm_sharing.models.base import Base, SoftDeleteMixin, TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin


class RecordMixin(UUIDPrimaryKeyMixin, TenantMixin, SoftDeleteMixin, TimestampMixin):
    """业务记录公共字段。"""

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)


class Account(Base, RecordMixin):
    """客户。"""

    __tablename__ = "accounts"

    industry: Mapped[str | None] = mapped_column(String(64), nullable=True)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rating: Mapped[str | None] = mapped_column(String(32), nullable=True)


class Opportunity(Base, RecordMixin):
    """商机。"""

    __tablename__ = "opportunities"

    account_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    stage_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)


class Lead(Base, RecordMixin):
    """线索。"""

    __tablename__ = "leads"

    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    lead_source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rating: Mapped[str | None] = mapped_column(String(32), nullable=True)


class Contract(Base, RecordMixin):
    """合同。"""

    __tablename__ = "contracts"

    account_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)


class Invoice(Base, RecordMixin):
    """发票。"""

    __tablename__ = "invoices"

    account_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)


class Contact(Base, RecordMixin):
    """联系人，访问权限通常由所属客户决定。"""

    __tablename__ = "contacts"

    account_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)


class Quote(Base, RecordMixin):
    """报价，访问权限通常由所属商机决定。"""

    __tablename__ = "quotes"

    opportunity_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
