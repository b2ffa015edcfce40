from collections.abc import Generator
from dataclasses import dataclass
from uuid import UUID, uuid4

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from conftest import FULL_CRUD, READ_ONLY, TenantFactory, make_sqlite_engine
from crm_sharing.core.config import get_settings
from crm_sharing.db.session import get_db
from crm_sharing.main import app
from crm_sharing.models import Account
from crm_sharing.models.base import Base
from crm_sharing.models.enums import SharingRuleType, SharingTargetType
from crm_sharing.services import calculate_new_record_shares

JWT_SECRET = "http-test-secret-key-at-least-32-bytes"


@dataclass
class SeededOrg:
    """接口测试使用的租户数据。"""

    tenant_id: UUID
    rep_id: UUID
    manager_id: UUID
    agent_id: UUID
    reader_id: UUID
    admin_id: UUID
    account_id: UUID
    rule_id: UUID


def _seed(session_factory: sessionmaker) -> SeededOrg:
    db = session_factory()
    try:
        factory = TenantFactory(db)
        crud = factory.profile("Sales Profile", Account=FULL_CRUD)
        factory.profile_field(crud, "Account", "rating", readable=False, editable=False)
        admin_profile = factory.profile("Admin", Account={**FULL_CRUD, "modify_all": True})
        manager_role = factory.role("Sales Manager")
        rep_role = factory.role("Sales Rep", parent=manager_role)
        support_role = factory.role("Support")
        rep = factory.user("Ray", role=rep_role, profile=crud)
        manager = factory.user("Mia", role=manager_role, profile=crud)
        agent = factory.user("Ann", role=support_role, profile=crud)
        reader = factory.user("Reed", profile=factory.profile("Reader", Account=READ_ONLY))
        admin = factory.user("Ada", profile=admin_profile)
        account = factory.record(Account, rep, rating="Hot")
        calculate_new_record_shares(
            db, tenant_id=factory.tenant_id, object_name="Account", record_id=account.id, owner_id=rep.id
        )
        rule = factory.rule(
            "Account",
            name="Reader visibility",
            rule_type=SharingRuleType.CRITERIA_BASED,
            filter_criteria={"rating": "Hot"},
            target_type=SharingTargetType.USER,
            target_id=reader.id,
        )
        seeded = SeededOrg(
            tenant_id=factory.tenant_id,
            rep_id=rep.id,
            manager_id=manager.id,
            agent_id=agent.id,
            reader_id=reader.id,
            admin_id=admin.id,
            account_id=account.id,
            rule_id=rule.id,
        )
        db.commit()
        return seeded
    finally:
        db.close()


@dataclass
class ApiHarness:
    client: TestClient
    org: SeededOrg

    def token(self, user_id: UUID, *, tenant_id: UUID | None = None, with_tenant: bool = True) -> str:
        claims = {"sub": str(user_id)}
        if with_tenant:
            claims["tenant_id"] = str(tenant_id or self.org.tenant_id)
        return jwt.encode(claims, JWT_SECRET, algorithm="HS256")

    def call(self, method: str, path: str, user_id: UUID | None = None, **kwargs):
        headers = kwargs.pop("headers", {})
        if user_id is not None:
            headers["Authorization"] = f"Bearer {self.token(user_id)}"
        return self.client.request(method, f"/api{path}", headers=headers, **kwargs)

    def success(self, method: str, path: str, user_id: UUID | None = None, **kwargs) -> dict:
        response = self.call(method, path, user_id, **kwargs)
        assert response.status_code == 200, response.text
        payload = response.json()
        assert set(payload) == {"request_id", "data", "meta"}
        assert payload["request_id"] == response.headers["X-Request-Id"]
        return payload

    def error(self, method: str, path: str, user_id: UUID | None = None, *, expected_status: int, **kwargs) -> dict:
        response = self.call(method, path, user_id, **kwargs)
        assert response.status_code == expected_status, response.text
        payload = response.json()
        assert set(payload) == {"request_id", "error"}
        assert set(payload["error"]) == {"code", "message", "details"}
        return payload["error"]


@pytest.fixture
def api(monkeypatch: pytest.MonkeyPatch) -> Generator[ApiHarness, None, None]:
    monkeypatch.setenv("CRM_AUTH_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("CRM_AUTH_JWT_ALGORITHMS", "HS256")
    get_settings.cache_clear()
    app.dependency_overrides.clear()

    sqlite_engine = make_sqlite_engine()
    testing_session_local = sessionmaker(bind=sqlite_engine, autoflush=False, autocommit=False, class_=Session)

    def override_get_db() -> Generator[Session, None, None]:
        db = testing_session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    org = _seed(testing_session_local)
    with TestClient(app) as client:
        yield ApiHarness(client=client, org=org)
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=sqlite_engine)
    sqlite_engine.dispose()
    get_settings.cache_clear()


def _account_path(api: ApiHarness, suffix: str = "") -> str:
    return f"/sharing/objects/Account/records/{api.org.account_id}{suffix}"


def test_health_probes(api: ApiHarness):
    live = api.success("GET", "/health/live")
    ready = api.success("GET", "/health/ready")

    assert live["data"]["status"] == "ok"
    assert live["meta"]["method"] == "GET"
    assert ready["data"]["status"] == "ready"
    assert {"roles", "sharing_rules", "accounts", "contacts", "account_shares", "lead_shares"} <= set(
        ready["data"]["tables"]
    )
    assert ready["data"]["sharable_objects"] == ["Account", "Opportunity", "Lead", "Contract", "Invoice"]


def test_readiness_fails_when_tables_are_missing(api: ApiHarness):
    bare_engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    bare_session = sessionmaker(bind=bare_engine, autoflush=False, autocommit=False, class_=Session)

    def override_get_db() -> Generator[Session, None, None]:
        db = bare_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        error = api.error("GET", "/health/ready", expected_status=503)
    finally:
        bare_engine.dispose()

    assert error["code"] == "STORAGE_NOT_READY"
    assert error["details"]["table"] == "roles"


def test_missing_or_invalid_token_is_rejected(api: ApiHarness):
    error = api.error("GET", "/access/objects/Account/permissions", expected_status=401)
    assert error["code"] == "UNAUTHORIZED"

    forged = jwt.encode({"sub": str(api.org.rep_id), "tenant_id": str(api.org.tenant_id)}, "x" * 40, algorithm="HS256")
    error = api.error(
        "GET",
        "/access/objects/Account/permissions",
        headers={"Authorization": f"Bearer {forged}"},
        expected_status=401,
    )
    assert error["code"] == "UNAUTHORIZED"


def test_token_without_tenant_is_rejected(api: ApiHarness):
    token = api.token(api.org.rep_id, with_tenant=False)

    error = api.error(
        "GET",
        "/access/objects/Account/permissions",
        headers={"Authorization": f"Bearer {token}"},
        expected_status=422,
    )

    assert error["code"] == "TENANT_CONTEXT_REQUIRED"


def test_object_and_field_permissions(api: ApiHarness):
    permissions = api.success("GET", "/access/objects/Account/permissions", api.org.rep_id)["data"]
    fields = api.success("GET", "/access/objects/Account/fields", api.org.rep_id)["data"]

    assert permissions["can_read"] and permissions["can_update"]
    assert not permissions["modify_all"]
    assert fields["fields"] == [{"field_name": "rating", "is_readable": False, "is_editable": False}]


def test_unknown_object_is_reported(api: ApiHarness):
    error = api.error("GET", "/access/objects/Widget/permissions", api.org.rep_id, expected_status=422)

    assert error["code"] == "UNSUPPORTED_OBJECT"


def test_record_access_levels(api: ApiHarness):
    path = f"/access/objects/Account/records/{api.org.account_id}"

    assert api.success("GET", path, api.org.rep_id)["data"]["access_level"] == "ReadWrite"
    assert api.success("GET", path, api.org.manager_id)["data"]["access_level"] == "ReadWrite"
    assert api.success("GET", path, api.org.agent_id)["data"]["access_level"] == "None"

    error = api.error("GET", f"/access/objects/Account/records/{uuid4()}", api.org.rep_id, expected_status=404)
    assert error["code"] == "RECORD_NOT_FOUND"


def test_record_filter(api: ApiHarness):
    missing = uuid4()

    payload = api.success(
        "POST",
        "/access/objects/Account/records/filter",
        api.org.manager_id,
        json={"record_ids": [str(missing), str(api.org.account_id)], "required_access": "ReadWrite"},
    )

    assert payload["data"]["record_ids"] == [str(api.org.account_id)]
    assert payload["meta"]["requested"] == 2
    assert payload["meta"]["accessible"] == 1


def test_manual_share_lifecycle(api: ApiHarness):
    agent = str(api.org.agent_id)
    shares = api.success("GET", _account_path(api, "/shares"), api.org.rep_id)["data"]["shares"]
    assert [item["row_cause"] for item in shares] == ["Owner", "RoleHierarchy"]
    assert shares[0]["subject_name"] == "Ray"

    created = api.success(
        "POST",
        _account_path(api, "/shares"),
        api.org.rep_id,
        json={"subject_type": "User", "subject_id": agent, "access_level": "Read"},
    )["data"]
    assert created["row_cause"] == "Manual"
    access = api.success("GET", f"/access/objects/Account/records/{api.org.account_id}", api.org.agent_id)
    assert access["data"]["access_level"] == "Read"

    # 只读用户不能继续共享。
    error = api.error(
        "POST",
        _account_path(api, "/shares"),
        api.org.agent_id,
        json={"subject_type": "User", "subject_id": str(api.org.manager_id), "access_level": "Read"},
        expected_status=403,
    )
    assert error["code"] == "INSUFFICIENT_PRIVILEGES"

    deleted = api.success("DELETE", _account_path(api, f"/shares/User/{agent}"), api.org.rep_id)["data"]
    assert deleted["deleted"] is True
    again = api.success("DELETE", _account_path(api, f"/shares/User/{agent}"), api.org.rep_id)["data"]
    assert again["deleted"] is False
    api.error("GET", _account_path(api, "/shares"), api.org.agent_id, expected_status=403)


def test_manual_share_rejects_invalid_payload(api: ApiHarness):
    error = api.error(
        "POST",
        _account_path(api, "/shares"),
        api.org.rep_id,
        json={"subject_type": "User", "subject_id": str(api.org.agent_id), "access_level": "None"},
        expected_status=422,
    )

    assert error["code"] == "VALIDATION_ERROR"


def test_recalculation_requires_modify_all(api: ApiHarness):
    api.error("POST", f"/sharing/rules/{api.org.rule_id}/recalculate", api.org.rep_id, expected_status=403)
    api.error("POST", _account_path(api, "/recalculate"), api.org.rep_id, expected_status=403)
    api.error("POST", f"/sharing/rules/{uuid4()}/recalculate", api.org.admin_id, expected_status=404)


def test_rule_and_record_recalculation(api: ApiHarness):
    payload = api.success("POST", f"/sharing/rules/{api.org.rule_id}/recalculate", api.org.admin_id)
    report = payload["data"]
    assert payload["meta"]["failure_count"] == 0
    assert payload["meta"]["complete"] is True

    assert report["processed"] == 1
    assert report["shares_written"] == 1
    assert report["failures"] == []
    assert not report["cancelled"]
    access = api.success("GET", f"/access/objects/Account/records/{api.org.account_id}", api.org.reader_id)
    assert access["data"]["access_level"] == "Read"

    result = api.success("POST", _account_path(api, "/recalculate"), api.org.admin_id)["data"]
    assert result["shares_written"] == 2
    assert result["failures"] == []
