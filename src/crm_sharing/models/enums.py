"""领域枚举定义。"""

from enum import StrEnum


class AccessLevel(StrEnum):
    """记录访问级别，既用于共享授权也用于判定结果。"""

    NONE = "None"  # 无访问权限。
    READ = "Read"  # 只读。
    READ_WRITE = "ReadWrite"  # 读写。


class OWDAccessLevel(StrEnum):
    """组织级默认访问策略。"""

    PRIVATE = "Private"  # 仅所有者及上级、共享对象可见。
    PUBLIC_READ_ONLY = "PublicReadOnly"  # 全员只读。
    PUBLIC_READ_WRITE = "PublicReadWrite"  # 全员读写。
    CONTROLLED_BY_PARENT = "ControlledByParent"  # 完全由父记录访问权限决定。


class ShareSubjectType(StrEnum):
    """共享行授权主体类型。"""

    USER = "User"
    ROLE = "Role"
    GROUP = "Group"


class RowCause(StrEnum):
    """共享行产生原因，决定重算时是否允许覆盖。"""

    OWNER = "Owner"  # 记录所有者。
    ROLE_HIERARCHY = "RoleHierarchy"  # 所有者角色的上级角色。
    RULE = "Rule"  # 共享规则派生。
    MANUAL = "Manual"  # 用户手工共享，重算从不触碰。
    TEAM = "Team"
    TERRITORY = "Territory"
    IMPLICIT = "Implicit"


class SharingRuleType(StrEnum):
    """共享规则类型。"""

    OWNER_BASED = "OwnerBased"  # 按记录所有者所在人群触发。
    CRITERIA_BASED = "CriteriaBased"  # 按记录字段条件触发。


class SharingSourceType(StrEnum):
    """基于所有者的规则来源人群类型。"""

    ROLE = "Role"
    ROLE_AND_SUBORDINATES = "RoleAndSubordinates"
    PUBLIC_GROUP = "PublicGroup"


class SharingTargetType(StrEnum):
    """共享规则授权目标类型。"""

    USER = "User"
    ROLE = "Role"
    ROLE_AND_SUBORDINATES = "RoleAndSubordinates"
    PUBLIC_GROUP = "PublicGroup"


class GroupMemberType(StrEnum):
    """公共组成员类型，Group 成员使组关系成为递归图。"""

    USER = "User"
    ROLE = "Role"
    ROLE_AND_SUBORDINATES = "RoleAndSubordinates"
    GROUP = "Group"


class RecordAction(StrEnum):
    """记录操作动作。"""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class FieldAccessMode(StrEnum):
    """字段安全处理模式。"""

    READ = "read"
    EDIT = "edit"


_ACCESS_RANK = {
    AccessLevel.NONE: 0,
    AccessLevel.READ: 1,
    AccessLevel.READ_WRITE: 2,
}


def access_rank(level: str | None) -> int:
    """返回访问级别的序数，未知值视为无权限。"""
    if level is None:
        return 0
    try:
        return _ACCESS_RANK[AccessLevel(level)]
    except ValueError:
        return 0


def max_access(*levels: str | None) -> AccessLevel:
    """取多个访问级别中的最大值（None < Read < ReadWrite）。"""
    best = AccessLevel.NONE
    for level in levels:
        if access_rank(level) > _ACCESS_RANK[best]:
            best = AccessLevel(level)
    return best
