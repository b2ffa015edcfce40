"""可共享对象静态登记表。

记录每个业务对象对应的记录表、共享表以及 ControlledByParent 场景下的父对象引用。
"""

from dataclasses import dataclass

from crm_sharing.errors import UnsupportedObject
from crm_sharing.models.records import Account, Contact, Contract, Invoice, Lead, Opportunity, Quote
from crm_sharing.models.sharing import AccountShare, ContractShare, InvoiceShare, LeadShare, OpportunityShare


@dataclass(frozen=True)
class ParentLink:
    """子对象到父对象的引用关系。"""

    # 父对象名称。
    object_name: str
    # 子记录上保存父记录 ID 的属性名。
    parent_id_field: str


@dataclass(frozen=True)
class ObjectDescriptor:
    """业务对象描述。"""

    name: str
    record_model: type
    share_model: type | None = None
    parent: ParentLink | None = None

    @property
    def is_sharable(self) -> bool:
        return self.share_model is not None


OBJECT_REGISTRY: dict[str, ObjectDescriptor] = {
    "Account": ObjectDescriptor("Account", Account, AccountShare),
    "Opportunity": ObjectDescriptor("Opportunity", Opportunity, OpportunityShare),
    "Lead": ObjectDescriptor("Lead", Lead, LeadShare),
    "Contract": ObjectDescriptor("Contract", Contract, ContractShare),
    "Invoice": ObjectDescriptor("Invoice", Invoice, InvoiceShare),
    "Contact": ObjectDescriptor("Contact", Contact, parent=ParentLink("Account", "account_id")),
    "Quote": ObjectDescriptor("Quote", Quote, parent=ParentLink("Opportunity", "opportunity_id")),
}


def get_object_descriptor(object_name: str) -> ObjectDescriptor:
    """返回对象描述，未登记对象直接失败。"""
    descriptor = OBJECT_REGISTRY.get(object_name)
    if descriptor is None:
        raise UnsupportedObject(f"object is not registered: {object_name}", object_name=object_name)
    return descriptor


def get_share_model(object_name: str) -> type:
    """返回对象共享表模型，未配置共享表视为配置错误。"""
    descriptor = get_object_descriptor(object_name)
    if descriptor.share_model is None:
        raise UnsupportedObject(f"no share table configured for object: {object_name}", object_name=object_name)
    return descriptor.share_model


def sharable_object_names() -> list[str]:
    """返回所有配置了共享表的对象名称。"""
    return [name for name, descriptor in OBJECT_REGISTRY.items() if descriptor.is_sharable]
