from collections.abc import Generator
from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import crm_sharing.models  # noqa: F401
from crm_sharing.models import (
    OrgWideDefault,
    PermissionProfile,
    PermissionSet,
    PermissionSetFieldPermission,
    PermissionSetObjectPermission,
    ProfileFieldPermission,
    ProfileObjectPermission,
    PublicGroup,
    PublicGroupMember,
    Role,
    SharingRule,
    User,
    UserPermissionSet,
)
from crm_sharing.models.base import Base

READ_ONLY = {"can_read": True}
FULL_CRUD = {"can_create": True, "can_read": True, "can_update": True, "can_delete": True}


def make_sqlite_engine() -> Engine:
    """内存 SQLite 引擎。

    pysqlite 默认的事务处理会破坏 SAVEPOINT，这里改为由 SQLAlchemy 显式发出 BEGIN。
    """
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    return engine


class TenantFactory:
    """按租户构造测试数据。"""

    def __init__(self, db: Session, tenant_id: UUID | None = None) -> None:
        self.db = db
        self.tenant_id = tenant_id or uuid4()

    def add(self, obj: Any) -> Any:
        self.db.add(obj)
        self.db.flush()
        return obj

    def role(self, name: str, parent: Role | None = None) -> Role:
        return self.add(Role(tenant_id=self.tenant_id, name=name, parent_role_id=parent.id if parent else None))

    def profile(self, name: str = "Standard User", **object_permissions: dict[str, bool]) -> PermissionProfile:
        profile = self.add(PermissionProfile(tenant_id=self.tenant_id, name=name))
        for object_name, flags in object_permissions.items():
            self.add(
                ProfileObjectPermission(
                    tenant_id=self.tenant_id,
                    profile_id=profile.id,
                    object_name=object_name,
                    **flags,
                )
            )
        return profile

    def permission_set(self, name: str, *, is_active: bool = True, **object_permissions: dict[str, bool]) -> PermissionSet:
        permission_set = self.add(PermissionSet(tenant_id=self.tenant_id, name=name, is_active=is_active))
        for object_name, flags in object_permissions.items():
            self.add(
                PermissionSetObjectPermission(
                    tenant_id=self.tenant_id,
                    permission_set_id=permission_set.id,
                    object_name=object_name,
                    **flags,
                )
            )
        return permission_set

    def assign(self, user: User, permission_set: PermissionSet) -> UserPermissionSet:
        return self.add(
            UserPermissionSet(tenant_id=self.tenant_id, user_id=user.id, permission_set_id=permission_set.id)
        )

    def profile_field(self, profile: PermissionProfile, object_name: str, field_name: str, *, readable: bool, editable: bool):
        return self.add(
            ProfileFieldPermission(
                tenant_id=self.tenant_id,
                profile_id=profile.id,
                object_name=object_name,
                field_name=field_name,
                is_readable=readable,
                is_editable=editable,
            )
        )

    def permission_set_field(
        self,
        permission_set: PermissionSet,
        object_name: str,
        field_name: str,
        *,
        readable: bool,
        editable: bool,
    ):
        return self.add(
            PermissionSetFieldPermission(
                tenant_id=self.tenant_id,
                permission_set_id=permission_set.id,
                object_name=object_name,
                field_name=field_name,
                is_readable=readable,
                is_editable=editable,
            )
        )

    def user(
        self,
        name: str,
        *,
        role: Role | None = None,
        profile: PermissionProfile | None = None,
        is_active: bool = True,
    ) -> User:
        return self.add(
            User(
                tenant_id=self.tenant_id,
                email=f"{name.lower().replace(' ', '.')}-{uuid4().hex[:6]}@example.com",
                display_name=name,
                role_id=role.id if role else None,
                profile_id=profile.id if profile else None,
                is_active=is_active,
            )
        )

    def owd(self, object_name: str, internal_access: str, *, grant_access_using_hierarchies: bool = True):
        return self.add(
            OrgWideDefault(
                tenant_id=self.tenant_id,
                object_name=object_name,
                internal_access=internal_access,
                external_access="Private",
                grant_access_using_hierarchies=grant_access_using_hierarchies,
            )
        )

    def group(self, name: str, *members: tuple[str, UUID]) -> PublicGroup:
        group = self.add(PublicGroup(tenant_id=self.tenant_id, name=name))
        for member_type, member_id in members:
            self.group_member(group, member_type, member_id)
        return group

    def group_member(self, group: PublicGroup, member_type: str, member_id: UUID) -> PublicGroupMember:
        return self.add(
            PublicGroupMember(
                tenant_id=self.tenant_id,
                group_id=group.id,
                member_type=member_type,
                member_id=member_id,
            )
        )

    def rule(
        self,
        object_name: str,
        *,
        rule_type: str,
        target_type: str,
        target_id: UUID,
        access_level: str = "Read",
        source_type: str | None = None,
        source_id: UUID | None = None,
        filter_criteria: dict[str, Any] | None = None,
        is_active: bool = True,
        name: str | None = None,
    ) -> SharingRule:
        return self.add(
            SharingRule(
                tenant_id=self.tenant_id,
                name=name or f"rule-{uuid4().hex[:6]}",
                object_name=object_name,
                rule_type=rule_type,
                source_type=source_type,
                source_id=source_id,
                target_type=target_type,
                target_id=target_id,
                access_level=access_level,
                filter_criteria=filter_criteria,
                is_active=is_active,
            )
        )

    def record(self, model: type, owner: User, **fields: Any):
        fields.setdefault("name", f"{model.__name__}-{uuid4().hex[:6]}")
        return self.add(model(tenant_id=self.tenant_id, owner_id=owner.id, **fields))


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    sqlite_engine = make_sqlite_engine()
    yield sqlite_engine
    Base.metadata.drop_all(bind=sqlite_engine)
    sqlite_engine.dispose()


@pytest.fixture
def db(engine: Engine) -> Generator[Session, None, None]:
    local_session = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    session = local_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db: Session) -> TenantFactory:
    return TenantFactory(db)
