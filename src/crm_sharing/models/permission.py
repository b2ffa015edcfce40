"""简档、权限集及对象/字段权限模型。"""

from uuid import UUID

from sqlalchemy import Boolean, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crm_sharing.models.base import Base, SoftDeleteMixin, TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin


class PermissionProfile(Base, UUIDPrimaryKeyMixin, TenantMixin, SoftDeleteMixin, TimestampMixin):
    """权限简档，提供用户的基线权限。"""

    __tablename__ = "permission_profiles"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uk_permission_profile_name"),)

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    # 系统简档不可重命名或删除。
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PermissionSet(Base, UUIDPrimaryKeyMixin, TenantMixin, SoftDeleteMixin, TimestampMixin):
    """权限集，在简档之上叠加的附加授权包。"""

    __tablename__ = "permission_sets"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uk_permission_set_name"),)

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    # 停用的权限集不参与合并。
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserPermissionSet(Base, UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin):
    """用户与权限集分配关系。"""

    __tablename__ = "user_permission_sets"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", "permission_set_id", name="uk_user_permission_set"),
    )

    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    permission_set_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)


class ObjectPermissionMixin:
    """对象级权限字段。缺失行表示全部为 False，从不推断为允许。"""

    object_name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    can_create: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_update: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # 查看全部记录，绕过所有权与共享。
    view_all: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # 修改全部记录，绕过所有权与共享。
    modify_all: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class FieldPermissionMixin:
    """字段级权限字段。缺失行采用默认策略（可读、不可编辑）。"""

    object_name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    field_name: Mapped[str] = mapped_column(String(64), nullable=False)
    is_readable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_editable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ProfileObjectPermission(Base, UUIDPrimaryKeyMixin, TenantMixin, ObjectPermissionMixin, TimestampMixin):
    """简档对象权限。"""

    __tablename__ = "profile_object_permissions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "profile_id", "object_name", name="uk_profile_object_permission"),
    )

    profile_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)


class PermissionSetObjectPermission(Base, UUIDPrimaryKeyMixin, TenantMixin, ObjectPermissionMixin, TimestampMixin):
    """权限集对象权限。"""

    __tablename__ = "permission_set_object_permissions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "permission_set_id", "object_name", name="uk_permission_set_object_permission"),
    )

    permission_set_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)


class ProfileFieldPermission(Base, UUIDPrimaryKeyMixin, TenantMixin, FieldPermissionMixin, TimestampMixin):
    """简档字段权限。"""

    __tablename__ = "profile_field_permissions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "profile_id", "object_name", "field_name", name="uk_profile_field_permission"),
    )

    profile_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)


class PermissionSetFieldPermission(Base, UUIDPrimaryKeyMixin, TenantMixin, FieldPermissionMixin, TimestampMixin):
    """权限集字段权限。"""

    __tablename__ = "permission_set_field_permissions"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "permission_set_id",
            "object_name",
            "field_name",
            name="uk_permission_set_field_permission",
        ),
    )

    permission_set_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
