"""角色层级服务。

角色按父指针组成森林。数据模型不强制无环，因此所有遍历都基于一次性加载的
邻接表并使用已访问集合防环：配置错误形成的环只会导致"找不到新节点"，不会死循环。
"""

from collections import defaultdict, deque
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_sharing.errors import RoleHierarchyCycle
from crm_sharing.models.identity import Role, User


class RoleTree:
    """租户内未删除角色的邻接表。"""

    def __init__(self, parents: dict[UUID, UUID | None]) -> None:
        self._parents = parents
        self._children: dict[UUID, list[UUID]] = defaultdict(list)
        for role_id, parent_id in parents.items():
            if parent_id is not None and parent_id in parents:
                self._children[parent_id].append(role_id)

    @classmethod
    def load(cls, db: Session, *, tenant_id: UUID) -> "RoleTree":
        rows = db.execute(
            select(Role.id, Role.parent_role_id)
            .where(Role.tenant_id == tenant_id)
            .where(Role.is_deleted.is_(False))
        ).all()
        return cls({row.id: row.parent_role_id for row in rows})

    def parent_of(self, role_id: UUID) -> UUID | None:
        """返回有效父角色；父角色已删除或不存在时视为根。"""
        parent_id = self._parents.get(role_id)
        if parent_id is None or parent_id not in self._parents:
            return None
        return parent_id

    def path_to_root(self, role_id: UUID) -> list[UUID]:
        """从指定角色向上直到根的路径（含自身）。"""
        if role_id not in self._parents:
            return []
        path: list[UUID] = []
        visited: set[UUID] = set()
        current: UUID | None = role_id
        while current is not None and current not in visited:
            visited.add(current)
            path.append(current)
            current = self.parent_of(current)
        return path

    def ancestors(self, role_id: UUID) -> list[UUID]:
        """由近及远的上级角色列表（不含自身）。"""
        return [item for item in self.path_to_root(role_id)[1:] if item != role_id]

    def is_ancestor(self, source_role_id: UUID, target_role_id: UUID) -> bool:
        """判断 source 是否为 target 的上级。

        从 target 的父角色开始向上走，角色本身不算自己的上级，
        除非在后续跳转中再次走到它（即层级成环）。
        """
        visited: set[UUID] = set()
        current = self.parent_of(target_role_id) if target_role_id in self._parents else None
        while current is not None and current not in visited:
            if current == source_role_id:
                return True
            visited.add(current)
            current = self.parent_of(current)
        return False

    def descendants(self, role_id: UUID, *, include_self: bool = True) -> list[UUID]:
        """广度优先返回子树内全部角色。"""
        if role_id not in self._parents:
            return []
        result: list[UUID] = []
        visited: set[UUID] = {role_id}
        queue: deque[UUID] = deque([role_id])
        while queue:
            current = queue.popleft()
            if current != role_id or include_self:
                result.append(current)
            for child in self._children.get(current, []):
                if child not in visited:
                    visited.add(child)
                    queue.append(child)
        return result

    def subordinates(self, role_id: UUID) -> list[UUID]:
        """返回 is_ancestor(role_id, r) 成立的全部角色 r。

        无环时即不含自身的子树；角色处在环上时自身也算自己的下级。
        """
        result = self.descendants(role_id, include_self=False)
        if self.is_ancestor(role_id, role_id):
            result.append(role_id)
        return result


def get_user_role_id(
    db: Session,
    *,
    tenant_id: UUID,
    user_id: UUID,
    active_only: bool = True,
) -> UUID | None:
    """查询用户角色 ID。"""
    stmt = (
        select(User.role_id)
        .where(User.tenant_id == tenant_id)
        .where(User.id == user_id)
        .where(User.is_deleted.is_(False))
    )
    if active_only:
        stmt = stmt.where(User.is_active.is_(True))
    return db.execute(stmt).scalar_one_or_none()


def get_user_role_path(db: Session, *, tenant_id: UUID, user_id: UUID) -> list[UUID]:
    """返回用户所在角色到根角色的有序路径。"""
    role_id = get_user_role_id(db, tenant_id=tenant_id, user_id=user_id)
    if role_id is None:
        return []
    return RoleTree.load(db, tenant_id=tenant_id).path_to_root(role_id)


def get_ancestor_role_ids(db: Session, *, tenant_id: UUID, role_id: UUID) -> list[UUID]:
    """返回角色的全部上级角色。"""
    return RoleTree.load(db, tenant_id=tenant_id).ancestors(role_id)


def get_descendant_role_ids(
    db: Session,
    *,
    tenant_id: UUID,
    role_id: UUID,
    include_self: bool = True,
) -> list[UUID]:
    """返回角色子树内的全部角色。"""
    return RoleTree.load(db, tenant_id=tenant_id).descendants(role_id, include_self=include_self)


def is_ancestor_role(db: Session, *, tenant_id: UUID, source_role_id: UUID, target_role_id: UUID) -> bool:
    """判断 source_role_id 是否为 target_role_id 的上级角色。"""
    return RoleTree.load(db, tenant_id=tenant_id).is_ancestor(source_role_id, target_role_id)


def validate_role_parent(
    db: Session,
    *,
    tenant_id: UUID,
    role_id: UUID,
    new_parent_id: UUID | None,
) -> None:
    """校验角色调整父节点后仍保持无环。

    设为根节点总是合法；挂到自身或自身子树下会成环。
    """
    if new_parent_id is None:
        return
    subtree = RoleTree.load(db, tenant_id=tenant_id).descendants(role_id, include_self=True)
    if new_parent_id == role_id or new_parent_id in subtree:
        raise RoleHierarchyCycle(
            "role parent would create a cycle",
            role_id=str(role_id),
            parent_role_id=str(new_parent_id),
        )
