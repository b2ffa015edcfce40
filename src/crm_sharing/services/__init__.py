"""共享计算服务层导出。"""

from crm_sharing.services.accessible_records import accessible_records_clause, list_accessible_record_ids
from crm_sharing.services.group_membership import (
    ShareSubject,
    expand_group_members,
    get_source_members,
    get_target_subjects,
    get_user_group_ids,
)
from crm_sharing.services.object_registry import (
    OBJECT_REGISTRY,
    get_object_descriptor,
    get_share_model,
    sharable_object_names,
)
from crm_sharing.services.org_defaults import DEFAULT_OWD, OrgWideDefaultPolicy, get_owd
from crm_sharing.services.permission_context import PermissionContext, get_permission_context
from crm_sharing.services.permissions import (
    FieldPermission,
    ObjectPermissions,
    get_field_permissions,
    get_object_permissions,
    has_field_permission,
    resolve_field_permission,
)
from crm_sharing.services.record_access import (
    apply_field_security,
    can_perform_action,
    filter_accessible_records,
    get_record_access,
    get_record_owner_id,
    require_record_access,
)
from crm_sharing.services.role_hierarchy import (
    RoleTree,
    get_ancestor_role_ids,
    get_descendant_role_ids,
    get_user_role_path,
    is_ancestor_role,
    validate_role_parent,
)
from crm_sharing.services.share_materializer import (
    RecalculationReport,
    RecordShareView,
    calculate_new_record_shares,
    create_manual_share,
    delete_manual_share,
    delete_record_shares,
    get_record_shares,
    recalculate_record_shares,
    recalculate_rule_shares,
    update_owner_share,
)
from crm_sharing.services.sharing_rules import (
    RuleApplicationResult,
    RuleFailure,
    apply_criteria_based_rule,
    apply_owner_based_rule,
    apply_rules_to_record,
)

__all__ = [
    "DEFAULT_OWD",
    "OBJECT_REGISTRY",
    "FieldPermission",
    "ObjectPermissions",
    "OrgWideDefaultPolicy",
    "PermissionContext",
    "RecalculationReport",
    "RecordShareView",
    "RoleTree",
    "RuleApplicationResult",
    "RuleFailure",
    "ShareSubject",
    "accessible_records_clause",
    "apply_criteria_based_rule",
    "apply_field_security",
    "apply_owner_based_rule",
    "apply_rules_to_record",
    "calculate_new_record_shares",
    "can_perform_action",
    "create_manual_share",
    "delete_manual_share",
    "delete_record_shares",
    "expand_group_members",
    "filter_accessible_records",
    "get_ancestor_role_ids",
    "get_descendant_role_ids",
    "get_field_permissions",
    "get_object_descriptor",
    "get_object_permissions",
    "get_owd",
    "get_permission_context",
    "get_record_access",
    "get_record_owner_id",
    "get_record_shares",
    "get_share_model",
    "get_source_members",
    "get_target_subjects",
    "get_user_group_ids",
    "get_user_role_path",
    "has_field_permission",
    "is_ancestor_role",
    "list_accessible_record_ids",
    "recalculate_record_shares",
    "recalculate_rule_shares",
    "require_record_access",
    "resolve_field_permission",
    "sharable_object_names",
    "update_owner_share",
    "validate_role_parent",
]
