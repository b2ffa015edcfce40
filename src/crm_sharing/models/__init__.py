"""ORM 模型导出集合。"""

from crm_sharing.models.identity import Role, User
from crm_sharing.models.permission import (
    PermissionProfile,
    PermissionSet,
    PermissionSetFieldPermission,
    PermissionSetObjectPermission,
    ProfileFieldPermission,
    ProfileObjectPermission,
    UserPermissionSet,
)
from crm_sharing.models.records import Account, Contact, Contract, Invoice, Lead, Opportunity, Quote
from crm_sharing.models.sharing import (
    AccountShare,
    ContractShare,
    InvoiceShare,
    LeadShare,
    OpportunityShare,
    OrgWideDefault,
    PublicGroup,
    PublicGroupMember,
    SharingRule,
)

__all__ = [
    "Account",
    "AccountShare",
    "Contact",
    "Contract",
    "ContractShare",
    "Invoice",
    "InvoiceShare",
    "Lead",
    "LeadShare",
    "Opportunity",
    "OpportunityShare",
    "OrgWideDefault",
    "PermissionProfile",
    "PermissionSet",
    "PermissionSetFieldPermission",
    "PermissionSetObjectPermission",
    "ProfileFieldPermission",
    "ProfileObjectPermission",
    "PublicGroup",
    "PublicGroupMember",
    "Quote",
    "Role",
    "SharingRule",
    "User",
    "UserPermissionSet",
]
