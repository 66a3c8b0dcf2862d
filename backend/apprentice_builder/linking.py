from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from .schemas import Classification, ReferenceItem
from .tree import EntityTree


class ReferenceLinker:
    """Links tree nodes (parents or children) to the KSBs of the active standard.

    References outside the current catalog are allowed: changing the standard
    does not prune existing links, and ``stale_references`` reports them so
    the caller can filter what it shows.
    """

    def __init__(self, tree: EntityTree, items: Iterable[ReferenceItem] = ()) -> None:
        self.tree = tree
        self.items: List[ReferenceItem] = list(items)

    def set_catalog(self, items: Iterable[ReferenceItem]) -> None:
        self.items = list(items)

    def references(self, node_id: str) -> FrozenSet[int]:
        node = self.tree.find_node(node_id)
        return frozenset(node.ksb_ids) if node is not None else frozenset()

    def toggle(self, node_id: str, reference_id: int) -> FrozenSet[int]:
        node = self.tree.find_node(node_id)
        if node is None:
            return frozenset()
        if reference_id in node.ksb_ids:
            node.ksb_ids = [i for i in node.ksb_ids if i != reference_id]
        else:
            node.ksb_ids = [*node.ksb_ids, reference_id]
        self.tree.touch()
        return frozenset(node.ksb_ids)

    def select_all_of_classification(self, node_id: str, classification: Classification) -> FrozenSet[int]:
        node = self.tree.find_node(node_id)
        if node is None:
            return frozenset()
        wanted = [item.id for item in self.items if item.classification == Classification(classification)]
        missing = [i for i in wanted if i not in node.ksb_ids]
        if missing:
            node.ksb_ids = [*node.ksb_ids, *missing]
            self.tree.touch()
        return frozenset(node.ksb_ids)

    def stale_references(self, node_id: str) -> FrozenSet[int]:
        known = {item.id for item in self.items}
        return frozenset(i for i in self.references(node_id) if i not in known)

    def referenced_ids(self) -> Set[int]:
        found: Set[int] = set()
        for parent in self.tree.parents:
            found.update(parent.ksb_ids)
        for child in self.tree.iter_children():
            found.update(child.ksb_ids)
        return found

    def counts(self) -> Dict[str, int]:
        totals = {c.value: 0 for c in Classification}
        for item in self.items:
            totals[item.classification.value] += 1
        return totals

    def item(self, reference_id: int) -> Optional[ReferenceItem]:
        for candidate in self.items:
            if candidate.id == reference_id:
                return candidate
        return None
