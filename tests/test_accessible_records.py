import pytest

from conftest import FULL_CRUD, READ_ONLY
from crm_sharing.models import Account, Contact
from crm_sharing.models.enums import AccessLevel, GroupMemberType, OWDAccessLevel, ShareSubjectType
from crm_sharing.services.accessible_records import accessible_records_clause, list_accessible_record_ids
from crm_sharing.services.record_access import get_record_access
from crm_sharing.services.share_materializer import create_manual_share


@pytest.fixture
def org(factory):
    profile = factory.profile("Sales Profile", Account=FULL_CRUD, Contact=FULL_CRUD)
    manager_role = factory.role("Sales Manager")
    rep_role = factory.role("Sales Rep", parent=manager_role)
    support_role = factory.role("Support")
    return {
        "profile": profile,
        "manager": factory.user("Mia", role=manager_role, profile=profile),
        "rep": factory.user("Ray", role=rep_role, profile=profile),
        "departed": factory.user("Dee", role=rep_role, profile=profile, is_active=False),
        "agent": factory.user("Ann", role=support_role, profile=profile),
        "support_role": support_role,
    }


def _share(db, factory, record, subject_type, subject_id):
    create_manual_share(
        db,
        tenant_id=factory.tenant_id,
        object_name=record.__class__.__name__,
        record_id=record.id,
        subject_type=subject_type,
        subject_id=subject_id,
        access_level=AccessLevel.READ,
    )


def _listed(db, factory, user, object_name="Account"):
    return set(list_accessible_record_ids(db, tenant_id=factory.tenant_id, user_id=user.id, object_name=object_name))


def _readable(db, factory, user, records, object_name="Account"):
    return {
        record.id
        for record in records
        if get_record_access(
            db, tenant_id=factory.tenant_id, user_id=user.id, object_name=object_name, record_id=record.id
        )
        != AccessLevel.NONE
    }


def test_list_filter_agrees_with_record_access(db, factory, org):
    group = factory.group("Support Team", (GroupMemberType.ROLE, org["support_role"].id))
    accounts = [
        factory.record(Account, org["rep"]),
        factory.record(Account, org["manager"]),
        factory.record(Account, org["agent"]),
        factory.record(Account, org["departed"]),
    ]
    by_user = factory.record(Account, org["manager"])
    by_role = factory.record(Account, org["manager"])
    by_group = factory.record(Account, org["manager"])
    _share(db, factory, by_user, ShareSubjectType.USER, org["agent"].id)
    _share(db, factory, by_role, ShareSubjectType.ROLE, org["support_role"].id)
    _share(db, factory, by_group, ShareSubjectType.GROUP, group.id)
    accounts.extend([by_user, by_role, by_group])

    for user in (org["manager"], org["rep"], org["agent"]):
        assert _listed(db, factory, user) == _readable(db, factory, user, accounts)

    assert _listed(db, factory, org["agent"]) == {accounts[2].id, by_user.id, by_role.id, by_group.id}
    # 停用用户的记录不会经由层级授权给上级。
    assert _listed(db, factory, org["manager"]) == {accounts[0].id, accounts[1].id, by_user.id, by_role.id, by_group.id}


def test_clause_short_circuits(db, factory, org):
    def clause(user, object_name="Account"):
        return accessible_records_clause(db, tenant_id=factory.tenant_id, user_id=user.id, object_name=object_name)

    auditor = factory.user("Auditor", profile=factory.profile("Auditor", Account={"can_read": True, "view_all": True}))
    assert clause(auditor) is None

    nobody = factory.user("Nobody", profile=factory.profile("Empty"))
    factory.record(Account, nobody)
    assert _listed(db, factory, nobody) == set()

    factory.owd("Account", OWDAccessLevel.PUBLIC_READ_ONLY)
    assert clause(org["agent"]) is None


def test_public_read_only_lists_every_record(db, factory, org):
    factory.owd("Account", OWDAccessLevel.PUBLIC_READ_ONLY)
    reader = factory.user("Reader", profile=factory.profile("Reader", Account=READ_ONLY))
    accounts = [factory.record(Account, org["rep"]), factory.record(Account, org["agent"])]

    assert _listed(db, factory, reader) == {item.id for item in accounts}


def test_controlled_by_parent_lists_children_of_visible_parents(db, factory, org):
    factory.owd("Contact", OWDAccessLevel.CONTROLLED_BY_PARENT)
    visible_parent = factory.record(Account, org["rep"])
    hidden_parent = factory.record(Account, org["agent"])
    contacts = [
        factory.record(Contact, org["agent"], account_id=visible_parent.id),
        factory.record(Contact, org["agent"], account_id=hidden_parent.id),
        factory.record(Contact, org["rep"]),
    ]

    listed = _listed(db, factory, org["manager"], "Contact")

    assert listed == {contacts[0].id}
    assert listed == _readable(db, factory, org["manager"], contacts, "Contact")


def test_limit_caps_result(db, factory, org):
    for _ in range(3):
        factory.record(Account, org["rep"])

    ids = list_accessible_record_ids(
        db, tenant_id=factory.tenant_id, user_id=org["rep"].id, object_name="Account", limit=2
    )

    assert len(ids) == 2


def test_cyclic_roles_list_the_same_records_as_record_access(db, factory, org):
    east = factory.role("East")
    west = factory.role("West", parent=east)
    # 绕过校验写出环：East <-> West。
    east.parent_role_id = west.id
    db.flush()
    viewer = factory.user("Vic", role=east, profile=org["profile"])
    colleague = factory.user("Cal", role=east, profile=org["profile"])
    partner = factory.user("Pia", role=west, profile=org["profile"])
    accounts = [factory.record(Account, owner) for owner in (colleague, partner, org["rep"])]

    listed = _listed(db, factory, viewer)

    assert listed == _readable(db, factory, viewer, accounts)
    assert listed == {accounts[0].id, accounts[1].id}
