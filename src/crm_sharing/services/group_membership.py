"""公共组与角色成员展开。

组成员可以是用户、角色、角色及下属或另一个组，嵌套组构成有向图。
展开时一次性加载租户内成员关系，按已访问集合迭代遍历，环状嵌套不会导致死循环。
"""

from collections import defaultdict
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_sharing.models.enums import GroupMemberType, ShareSubjectType, SharingSourceType, SharingTargetType
from crm_sharing.models.identity import User
from crm_sharing.models.sharing import PublicGroup, PublicGroupMember
from crm_sharing.services.role_hierarchy import RoleTree


@dataclass(frozen=True)
class ShareSubject:
    """共享行授权主体。"""

    subject_type: ShareSubjectType
    subject_id: UUID


class GroupGraph:
    """租户内未删除公共组的成员邻接表。"""

    def __init__(self, group_ids: set[UUID], members: list[tuple[UUID, str, UUID]]) -> None:
        self.group_ids = group_ids
        self._members: dict[UUID, list[tuple[str, UUID]]] = defaultdict(list)
        # 反向索引：成员 -> 包含它的组。
        self._containers: dict[tuple[str, UUID], list[UUID]] = defaultdict(list)
        for group_id, member_type, member_id in members:
            if group_id not in group_ids:
                continue
            self._members[group_id].append((member_type, member_id))
            self._containers[(member_type, member_id)].append(group_id)

    @classmethod
    def load(cls, db: Session, *, tenant_id: UUID) -> "GroupGraph":
        group_ids = set(
            db.execute(
                select(PublicGroup.id)
                .where(PublicGroup.tenant_id == tenant_id)
                .where(PublicGroup.is_deleted.is_(False))
            )
            .scalars()
            .all()
        )
        rows = db.execute(
            select(PublicGroupMember.group_id, PublicGroupMember.member_type, PublicGroupMember.member_id).where(
                PublicGroupMember.tenant_id == tenant_id
            )
        ).all()
        return cls(group_ids, [(row.group_id, row.member_type, row.member_id) for row in rows])

    def flatten(self, group_id: UUID) -> tuple[set[UUID], set[UUID], set[UUID]]:
        """展开组，返回 (用户 ID, 角色 ID, 角色及下属根 ID)。"""
        user_ids: set[UUID] = set()
        role_ids: set[UUID] = set()
        subtree_role_ids: set[UUID] = set()
        if group_id not in self.group_ids:
            return user_ids, role_ids, subtree_role_ids

        visited: set[UUID] = {group_id}
        stack = [group_id]
        while stack:
            current = stack.pop()
            for member_type, member_id in self._members.get(current, []):
                if member_type == GroupMemberType.USER:
                    user_ids.add(member_id)
                elif member_type == GroupMemberType.ROLE:
                    role_ids.add(member_id)
                elif member_type == GroupMemberType.ROLE_AND_SUBORDINATES:
                    subtree_role_ids.add(member_id)
                elif member_type == GroupMemberType.GROUP:
                    if member_id in self.group_ids and member_id not in visited:
                        visited.add(member_id)
                        stack.append(member_id)
        return user_ids, role_ids, subtree_role_ids

    def groups_containing(self, seeds: list[tuple[str, UUID]]) -> set[UUID]:
        """反向求闭包：返回直接或经嵌套组间接包含任一种子成员的组。"""
        found: set[UUID] = set()
        stack: list[UUID] = []
        for seed in seeds:
            for group_id in self._containers.get(seed, []):
                if group_id not in found:
                    found.add(group_id)
                    stack.append(group_id)
        while stack:
            current = stack.pop()
            for parent_group_id in self._containers.get((GroupMemberType.GROUP.value, current), []):
                if parent_group_id not in found:
                    found.add(parent_group_id)
                    stack.append(parent_group_id)
        return found


def _users_in_roles(db: Session, *, tenant_id: UUID, role_ids: set[UUID]) -> set[UUID]:
    if not role_ids:
        return set()
    return set(
        db.execute(
            select(User.id)
            .where(User.tenant_id == tenant_id)
            .where(User.role_id.in_(role_ids))
            .where(User.is_deleted.is_(False))
        )
        .scalars()
        .all()
    )


def expand_group_members(
    db: Session,
    *,
    tenant_id: UUID,
    group_id: UUID,
    role_tree: RoleTree | None = None,
) -> set[UUID]:
    """递归展开公共组，返回全部成员用户 ID。"""
    user_ids, role_ids, subtree_role_ids = GroupGraph.load(db, tenant_id=tenant_id).flatten(group_id)
    if subtree_role_ids:
        tree = role_tree or RoleTree.load(db, tenant_id=tenant_id)
        for root_id in subtree_role_ids:
            role_ids.update(tree.descendants(root_id))
    return user_ids | _users_in_roles(db, tenant_id=tenant_id, role_ids=role_ids)


def get_source_members(
    db: Session,
    *,
    tenant_id: UUID,
    source_type: str,
    source_id: UUID,
) -> set[UUID]:
    """展开基于所有者规则的来源人群为用户 ID 集合。"""
    if source_type == SharingSourceType.ROLE:
        return _users_in_roles(db, tenant_id=tenant_id, role_ids={source_id})
    if source_type == SharingSourceType.ROLE_AND_SUBORDINATES:
        role_ids = set(RoleTree.load(db, tenant_id=tenant_id).descendants(source_id))
        return _users_in_roles(db, tenant_id=tenant_id, role_ids=role_ids)
    if source_type == SharingSourceType.PUBLIC_GROUP:
        return expand_group_members(db, tenant_id=tenant_id, group_id=source_id)
    return set()


def get_target_subjects(
    db: Session,
    *,
    tenant_id: UUID,
    target_type: str,
    target_id: UUID,
) -> list[ShareSubject]:
    """展开规则授权目标为共享行主体。

    说明：
    1. RoleAndSubordinates 展开为子树内每个角色各一个 Role 主体，不展开到用户，
       后续加入这些角色的用户自动继承访问权。
    2. PublicGroup 保持为单个 Group 主体，组成员在读取时再解析。
    """
    if target_type == SharingTargetType.USER:
        return [ShareSubject(ShareSubjectType.USER, target_id)]
    if target_type == SharingTargetType.ROLE:
        return [ShareSubject(ShareSubjectType.ROLE, target_id)]
    if target_type == SharingTargetType.ROLE_AND_SUBORDINATES:
        role_ids = RoleTree.load(db, tenant_id=tenant_id).descendants(target_id)
        return [ShareSubject(ShareSubjectType.ROLE, role_id) for role_id in role_ids]
    if target_type == SharingTargetType.PUBLIC_GROUP:
        return [ShareSubject(ShareSubjectType.GROUP, target_id)]
    return []


def get_user_group_ids(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    role_id: UUID | None,
    role_tree: RoleTree | None = None,
) -> set[UUID]:
    """返回用户所属的全部公共组。

    用户可经由以下途径成为组成员：直接作为 User 成员；所在角色作为 Role 成员；
    所在角色或其任一上级作为 RoleAndSubordinates 成员；以及上述组被其他组嵌套包含。
    """
    seeds: list[tuple[str, UUID]] = [(GroupMemberType.USER.value, user_id)]
    if role_id is not None:
        seeds.append((GroupMemberType.ROLE.value, role_id))
        tree = role_tree or RoleTree.load(db, tenant_id=tenant_id)
        for subtree_root in tree.path_to_root(role_id) or [role_id]:
            seeds.append((GroupMemberType.ROLE_AND_SUBORDINATES.value, subtree_root))
    return GroupGraph.load(db, tenant_id=tenant_id).groups_containing(seeds)
