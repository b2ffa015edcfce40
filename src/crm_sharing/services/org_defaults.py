"""组织级默认访问策略（OWD）查询。"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_sharing.models.enums import OWDAccessLevel
from crm_sharing.models.sharing import OrgWideDefault


@dataclass(frozen=True)
class OrgWideDefaultPolicy:
    """对象的默认访问策略。"""

    internal_access: OWDAccessLevel
    external_access: OWDAccessLevel
    grant_access_using_hierarchies: bool


# 未配置时的内置默认值。
DEFAULT_OWD = OrgWideDefaultPolicy(
    internal_access=OWDAccessLevel.PRIVATE,
    external_access=OWDAccessLevel.PRIVATE,
    grant_access_using_hierarchies=True,
)


def get_owd(db: Session, *, tenant_id: UUID, object_name: str) -> OrgWideDefaultPolicy:
    """返回对象的 OWD 配置，未配置时回退为 Private/Private/启用层级。"""
    row = db.execute(
        select(OrgWideDefault)
        .where(OrgWideDefault.tenant_id == tenant_id)
        .where(OrgWideDefault.object_name == object_name)
    ).scalar_one_or_none()
    if row is None:
        return DEFAULT_OWD
    return OrgWideDefaultPolicy(
        internal_access=OWDAccessLevel(row.internal_access),
        external_access=OWDAccessLevel(row.external_access),
        grant_access_using_hierarchies=bool(row.grant_access_using_hierarchies),
    )
