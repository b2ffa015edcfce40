from uuid import uuid4

import pytest

from conftest import FULL_CRUD, READ_ONLY
from crm_sharing.errors import PermissionDenied
from crm_sharing.models import Account, Contact, Lead
from crm_sharing.models.enums import (
    AccessLevel,
    FieldAccessMode,
    GroupMemberType,
    OWDAccessLevel,
    RecordAction,
    ShareSubjectType,
    SharingRuleType,
    SharingSourceType,
    SharingTargetType,
)
from crm_sharing.services.record_access import (
    apply_field_security,
    can_perform_action,
    filter_accessible_records,
    get_record_access,
    require_record_access,
)
from crm_sharing.services.share_materializer import calculate_new_record_shares, create_manual_share
from crm_sharing.services.sharing_rules import apply_owner_based_rule


@pytest.fixture
def org(factory):
    crud = factory.profile("Sales Profile", Account=FULL_CRUD, Contact=FULL_CRUD, Lead=FULL_CRUD)
    ceo = factory.role("CEO")
    manager = factory.role("Sales Manager", parent=ceo)
    rep = factory.role("Sales Rep", parent=manager)
    support = factory.role("Support")
    return {
        "profile": crud,
        "ceo_role": ceo,
        "manager_role": manager,
        "rep_role": rep,
        "support_role": support,
        "ceo": factory.user("Cora", role=ceo, profile=crud),
        "manager": factory.user("Mia", role=manager, profile=crud),
        "rep": factory.user("Ray", role=rep, profile=crud),
        "peer": factory.user("Pat", role=rep, profile=crud),
        "agent": factory.user("Ann", role=support, profile=crud),
    }


def _access(db, factory, user, record, object_name="Account"):
    return get_record_access(
        db, tenant_id=factory.tenant_id, user_id=user.id, object_name=object_name, record_id=record.id
    )


def test_private_record_is_hidden_from_other_users(db, factory, org):
    factory.owd("Account", OWDAccessLevel.PRIVATE)
    account = factory.record(Account, org["rep"])

    assert _access(db, factory, org["agent"], account) == AccessLevel.NONE


def test_public_read_only_grants_read(db, factory, org):
    factory.owd("Account", OWDAccessLevel.PUBLIC_READ_ONLY)
    account = factory.record(Account, org["rep"])

    assert _access(db, factory, org["agent"], account) == AccessLevel.READ


def test_public_read_write_grants_read_write(db, factory, org):
    factory.owd("Account", OWDAccessLevel.PUBLIC_READ_WRITE)
    account = factory.record(Account, org["rep"])

    assert _access(db, factory, org["agent"], account) == AccessLevel.READ_WRITE


def test_modify_all_overrides_private_owd(db, factory, org):
    factory.owd("Account", OWDAccessLevel.PRIVATE)
    admin = factory.user("Admin", profile=factory.profile("Admin", Account={"can_read": True, "modify_all": True}))
    account = factory.record(Account, org["rep"])

    assert _access(db, factory, admin, account) == AccessLevel.READ_WRITE


def test_view_all_grants_read(db, factory, org):
    auditor = factory.user("Auditor", profile=factory.profile("Auditor", Account={"can_read": True, "view_all": True}))
    account = factory.record(Account, org["rep"])

    assert _access(db, factory, auditor, account) == AccessLevel.READ


def test_object_read_permission_is_checked_first(db, factory, org):
    no_read = factory.user("Nobody", profile=factory.profile("Empty"))
    account = factory.record(Account, no_read)

    # 即使是所有者，没有对象读权限也不可见。
    assert _access(db, factory, no_read, account) == AccessLevel.NONE


def test_owner_has_read_write(db, factory, org):
    account = factory.record(Account, org["rep"])

    assert _access(db, factory, org["rep"], account) == AccessLevel.READ_WRITE


def test_role_hierarchy_grants_ancestors_read_write(db, factory, org):
    account = factory.record(Account, org["rep"])

    assert _access(db, factory, org["manager"], account) == AccessLevel.READ_WRITE
    assert _access(db, factory, org["ceo"], account) == AccessLevel.READ_WRITE
    # 同级角色不是上级。
    assert _access(db, factory, org["peer"], account) == AccessLevel.NONE


def test_hierarchy_access_can_be_switched_off(db, factory, org):
    factory.owd("Account", OWDAccessLevel.PRIVATE, grant_access_using_hierarchies=False)
    account = factory.record(Account, org["rep"])

    assert _access(db, factory, org["manager"], account) == AccessLevel.NONE


def test_missing_record_has_no_access(db, factory, org):
    missing = Account(id=uuid4())

    assert _access(db, factory, org["rep"], missing) == AccessLevel.NONE


def test_role_share_reaches_role_members(db, factory, org):
    account = factory.record(Account, org["rep"])
    create_manual_share(
        db,
        tenant_id=factory.tenant_id,
        object_name="Account",
        record_id=account.id,
        subject_type=ShareSubjectType.ROLE,
        subject_id=org["support_role"].id,
        access_level=AccessLevel.READ,
    )

    assert _access(db, factory, org["agent"], account) == AccessLevel.READ


def test_group_share_reaches_nested_group_members(db, factory, org):
    inner = factory.group("Inner", (GroupMemberType.USER, org["agent"].id))
    outer = factory.group("Outer", (GroupMemberType.GROUP, inner.id))
    account = factory.record(Account, org["rep"])
    create_manual_share(
        db,
        tenant_id=factory.tenant_id,
        object_name="Account",
        record_id=account.id,
        subject_type=ShareSubjectType.GROUP,
        subject_id=outer.id,
        access_level=AccessLevel.READ_WRITE,
    )

    assert _access(db, factory, org["agent"], account) == AccessLevel.READ_WRITE
    assert _access(db, factory, org["peer"], account) == AccessLevel.NONE


def test_highest_share_wins(db, factory, org):
    group = factory.group("Support Team", (GroupMemberType.ROLE, org["support_role"].id))
    account = factory.record(Account, org["rep"])
    for subject_type, subject_id, level in (
        (ShareSubjectType.USER, org["agent"].id, AccessLevel.READ),
        (ShareSubjectType.GROUP, group.id, AccessLevel.READ_WRITE),
    ):
        create_manual_share(
            db,
            tenant_id=factory.tenant_id,
            object_name="Account",
            record_id=account.id,
            subject_type=subject_type,
            subject_id=subject_id,
            access_level=level,
        )

    assert _access(db, factory, org["agent"], account) == AccessLevel.READ_WRITE


def test_owner_based_rule_grants_target_role_users(db, factory, org):
    rule = factory.rule(
        "Account",
        rule_type=SharingRuleType.OWNER_BASED,
        source_type=SharingSourceType.ROLE,
        source_id=org["rep_role"].id,
        target_type=SharingTargetType.ROLE,
        target_id=org["support_role"].id,
    )
    account = factory.record(Account, org["rep"])
    apply_owner_based_rule(db, rule=rule, record_id=account.id, owner_id=org["rep"].id)

    assert _access(db, factory, org["agent"], account) == AccessLevel.READ


def test_role_and_subordinates_source_covers_newly_assigned_user(db, factory, org):
    factory.rule(
        "Lead",
        rule_type=SharingRuleType.OWNER_BASED,
        source_type=SharingSourceType.ROLE_AND_SUBORDINATES,
        source_id=org["manager_role"].id,
        target_type=SharingTargetType.USER,
        target_id=org["agent"].id,
    )
    trainee_role = factory.role("Trainee", parent=org["rep_role"])
    trainee = factory.user("Tia", role=trainee_role, profile=org["profile"])
    lead = factory.record(Lead, trainee)

    calculate_new_record_shares(
        db, tenant_id=factory.tenant_id, object_name="Lead", record_id=lead.id, owner_id=trainee.id
    )

    assert _access(db, factory, org["agent"], lead, "Lead") == AccessLevel.READ


def test_role_and_subordinates_target_reaches_users_added_later(db, factory, org):
    factory.owd("Lead", OWDAccessLevel.PRIVATE)
    factory.rule(
        "Lead",
        rule_type=SharingRuleType.CRITERIA_BASED,
        filter_criteria={"status": "Open"},
        target_type=SharingTargetType.ROLE_AND_SUBORDINATES,
        target_id=org["manager_role"].id,
        access_level=AccessLevel.READ_WRITE,
    )
    lead = factory.record(Lead, org["agent"], status="Open")
    calculate_new_record_shares(
        db, tenant_id=factory.tenant_id, object_name="Lead", record_id=lead.id, owner_id=org["agent"].id
    )

    # 共享行生成之后才加入下级角色的用户，无需重算即可访问。
    newcomer = factory.user("Nia", role=org["rep_role"], profile=org["profile"])

    assert _access(db, factory, newcomer, lead, "Lead") == AccessLevel.READ_WRITE
    assert _access(db, factory, org["manager"], lead, "Lead") == AccessLevel.READ_WRITE
    assert _access(db, factory, org["ceo"], lead, "Lead") == AccessLevel.NONE


def test_controlled_by_parent_follows_parent_access(db, factory, org):
    factory.owd("Contact", OWDAccessLevel.CONTROLLED_BY_PARENT)
    account = factory.record(Account, org["rep"])
    contact = factory.record(Contact, org["agent"], account_id=account.id)
    orphan = factory.record(Contact, org["agent"])

    assert _access(db, factory, org["manager"], contact, "Contact") == AccessLevel.READ_WRITE
    # 子记录所有者本身对父记录无权限时也无法访问子记录。
    assert _access(db, factory, org["agent"], contact, "Contact") == AccessLevel.NONE
    assert _access(db, factory, org["agent"], orphan, "Contact") == AccessLevel.NONE


def test_can_perform_action_matrix(db, factory, org):
    reader = factory.user("Reader", role=org["support_role"], profile=factory.profile("Reader", Account=READ_ONLY))
    account = factory.record(Account, org["rep"])
    create_manual_share(
        db,
        tenant_id=factory.tenant_id,
        object_name="Account",
        record_id=account.id,
        subject_type=ShareSubjectType.USER,
        subject_id=org["agent"].id,
        access_level=AccessLevel.READ,
    )

    def can(user, action, record_id=account.id):
        return can_perform_action(
            db,
            tenant_id=factory.tenant_id,
            user_id=user.id,
            object_name="Account",
            action=action,
            record_id=record_id,
        )

    assert can(org["rep"], RecordAction.CREATE, None)
    assert not can(reader, RecordAction.CREATE, None)
    assert can(org["rep"], RecordAction.UPDATE)
    assert can(org["rep"], RecordAction.DELETE)
    assert can(org["agent"], RecordAction.READ)
    assert not can(org["agent"], RecordAction.UPDATE)
    assert not can(reader, RecordAction.READ)
    assert not can(reader, RecordAction.UPDATE, None)
    assert can(org["agent"], RecordAction.UPDATE, None)
    assert can(org["rep"], "delete")


def test_filter_accessible_records_keeps_order_and_drops_duplicates(db, factory, org):
    own_first = factory.record(Account, org["agent"])
    hidden = factory.record(Account, org["rep"])
    shared = factory.record(Account, org["rep"])
    own_last = factory.record(Account, org["agent"])
    create_manual_share(
        db,
        tenant_id=factory.tenant_id,
        object_name="Account",
        record_id=shared.id,
        subject_type=ShareSubjectType.USER,
        subject_id=org["agent"].id,
        access_level=AccessLevel.READ,
    )
    requested = [own_last.id, hidden.id, shared.id, own_first.id, own_last.id]

    def visible(required_access):
        return filter_accessible_records(
            db,
            tenant_id=factory.tenant_id,
            user_id=org["agent"].id,
            object_name="Account",
            record_ids=requested,
            required_access=required_access,
        )

    assert visible(AccessLevel.READ) == [own_last.id, shared.id, own_first.id]
    assert visible(AccessLevel.READ_WRITE) == [own_last.id, own_first.id]


def test_apply_field_security_masks_configured_fields_only(db, factory, org):
    profile = factory.profile("Masked", Account=READ_ONLY)
    factory.profile_field(profile, "Account", "rating", readable=False, editable=False)
    factory.profile_field(profile, "Account", "industry", readable=True, editable=False)
    user = factory.user("Masked User", profile=profile)
    record = {"name": "Acme", "rating": "Hot", "industry": "Retail"}

    def secure(mode):
        return apply_field_security(
            db,
            tenant_id=factory.tenant_id,
            user_id=user.id,
            object_name="Account",
            record=record,
            mode=mode,
        )

    assert secure(FieldAccessMode.READ) == {"name": "Acme", "rating": None, "industry": "Retail"}
    assert secure(FieldAccessMode.EDIT) == {"name": "Acme", "rating": None, "industry": None}
    assert record["rating"] == "Hot"


def test_require_record_access(db, factory, org):
    account = factory.record(Account, org["rep"])
    create_manual_share(
        db,
        tenant_id=factory.tenant_id,
        object_name="Account",
        record_id=account.id,
        subject_type=ShareSubjectType.USER,
        subject_id=org["agent"].id,
        access_level=AccessLevel.READ,
    )

    def require(user, level):
        return require_record_access(
            db,
            tenant_id=factory.tenant_id,
            user_id=user.id,
            object_name="Account",
            record_id=account.id,
            required_access=level,
        )

    assert require(org["agent"], AccessLevel.READ) == AccessLevel.READ
    with pytest.raises(PermissionDenied):
        require(org["agent"], AccessLevel.READ_WRITE)
    with pytest.raises(PermissionDenied):
        require(org["peer"], AccessLevel.READ)
