"""用户与角色层级模型。"""

from uuid import UUID

from sqlalchemy import Boolean, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crm_sharing.models.base import Base, SoftDeleteMixin, TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin


class Role(Base, UUIDPrimaryKeyMixin, TenantMixin, SoftDeleteMixin, TimestampMixin):
    """角色节点，按父指针组成森林。

    说明：
    1. 层级应保持无环，但数据模型本身不强制，遍历侧自行防环。
    2. 用户只引用角色，不拥有角色。
    """

    __tablename__ = "roles"

    # 角色名称。
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # 父角色 ID，为空表示根角色。
    parent_role_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)


class User(Base, UUIDPrimaryKeyMixin, TenantMixin, SoftDeleteMixin, TimestampMixin):
    """租户内用户。"""

    __tablename__ = "users"

    # 登录与通知邮箱。
    email: Mapped[str] = mapped_column(String(256), nullable=False)
    # 前端展示名。
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    # 简档 ID，每个用户至多一个。
    profile_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    # 角色 ID。
    role_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    # 是否启用，停用用户无法解析权限上下文。
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
