"""
菜单树组装

把扁平的菜单列表组装成森林：parent_id == 0 为根，父节点缺失的节点（通常已被上游过滤）被丢弃，
祖先链出现环的节点视为孤儿。同级按 (order_num, id) 升序。
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from rbac_sync.system.models.menu import SysMenu

logger = logging.getLogger(__name__)

ROOT_PARENT_ID = 0


@dataclass
class MenuTreeNode:
    menu: SysMenu
    children: List["MenuTreeNode"] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.menu.id

    def walk(self):
        """深度优先遍历（含自身）"""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def to_dict(self) -> Dict[str, Any]:
        m = self.menu
        return {
            "id": m.id, "parent_id": m.parent_id, "name": m.name,
            "path": m.path, "component": m.component, "icon": m.icon,
            "order_num": m.order_num, "menu_type": m.menu_type,
            "enabled": m.enabled, "perms": m.perms,
            "children": [c.to_dict() for c in self.children],
        }


def _sort_key(menu: SysMenu):
    return (menu.order_num or 0, menu.id)


def find_cycle_members(menus_by_id: Dict[int, SysMenu]) -> set:
    """返回所有祖先链上存在环的菜单 ID（环本身以及挂在环下、永远到不了根的节点）"""
    state: Dict[int, str] = {}  # "rooted" | "orphan" | "cyclic"
    cyclic = set()

    for start in menus_by_id:
        if start in state:
            continue
        chain: List[int] = []
        on_chain = set()
        current: Optional[int] = start
        outcome = "orphan"
        while True:
            if current == ROOT_PARENT_ID:
                outcome = "rooted"
                break
            if current in state:
                outcome = state[current]
                break
            if current in on_chain:
                outcome = "cyclic"
                break
            menu = menus_by_id.get(current)
            if menu is None:
                outcome = "orphan"
                break
            chain.append(current)
            on_chain.add(current)
            current = menu.parent_id or ROOT_PARENT_ID
        for menu_id in chain:
            state[menu_id] = outcome
        if outcome == "cyclic":
            cyclic.update(chain)
    return cyclic


def build_tree(menus: Iterable[SysMenu]) -> List[MenuTreeNode]:
    """扁平列表 → 菜单森林，每个菜单最多出现一次，输入含环时同样会终止"""
    menus_by_id: Dict[int, SysMenu] = {}
    for menu in menus:
        menus_by_id.setdefault(menu.id, menu)

    cyclic = find_cycle_members(menus_by_id)
    if cyclic:
        logger.warning(f"菜单父子关系存在环，已按孤儿处理: {sorted(cyclic)}")

    children_of: Dict[int, List[SysMenu]] = {}
    for menu in menus_by_id.values():
        if menu.id in cyclic or menu.parent_id == menu.id:
            continue
        children_of.setdefault(menu.parent_id or ROOT_PARENT_ID, []).append(menu)

    roots = [MenuTreeNode(m) for m in sorted(children_of.get(ROOT_PARENT_ID, []), key=_sort_key)]
    visited = {node.id for node in roots}
    stack = list(roots)
    while stack:
        node = stack.pop()
        for child in sorted(children_of.get(node.id, []), key=_sort_key):
            if child.id in visited:
                continue
            visited.add(child.id)
            child_node = MenuTreeNode(child)
            node.children.append(child_node)
            stack.append(child_node)
    return roots


def flatten(tree: List[MenuTreeNode]) -> List[SysMenu]:
    """森林 → 先序扁平列表"""
    result = []
    for root in tree:
        result.extend(node.menu for node in root.walk())
    return result
