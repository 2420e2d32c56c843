from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional
from pydantic import BaseModel, Field
from promptlab.core.errors import (
    DuplicateNodeError,
    NodeNotFoundError,
    ParentNotFoundError,
    RootRemovalForbiddenError,
)
from promptlab.models.question import BaseQuestion, Question


def _now() -> datetime:
    return datetime.now(timezone.utc)


class QaTreeNode(BaseModel):
    id: str
    parent_id: Optional[str] = None
    question: Question
    children: Dict[str, "QaTreeNode"] = {}
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def append(self, node: "QaTreeNode"):
        node.parent_id = self.id
        self.children[node.id] = node

    def remove_child(self, node_id: str):
        self.children.pop(node_id, None)

    def touch(self):
        self.updated_at = _now()


class QaTree:
    """
    A strictly hierarchical question/answer tree.

    Every node is reachable from the root and listed in ``index``; each node
    keeps its parent's id so removals never need to search the tree.
    """

    def __init__(self, root: QaTreeNode):
        root.parent_id = None
        self.root = root
        self.index: Dict[str, QaTreeNode] = {}
        for node in self._walk(root):
            if node.id in self.index:
                raise DuplicateNodeError(node.id)
            self.index[node.id] = node

    @classmethod
    def create_root(cls, question: BaseQuestion, root_id: str) -> "QaTree":
        return cls(QaTreeNode(id=root_id, question=question))

    @staticmethod
    def _walk(node: QaTreeNode) -> Iterator[QaTreeNode]:
        stack = [node]
        while stack:
            current = stack.pop()
            yield current
            # reversed keeps preorder when popping from the stack
            stack.extend(reversed(list(current.children.values())))

    def __len__(self) -> int:
        return len(self.index)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.index

    def __iter__(self) -> Iterator[QaTreeNode]:
        return self._walk(self.root)

    def has_node(self, node_id: Optional[str]) -> bool:
        return node_id is not None and node_id in self.index

    def find_node(self, node_id: Optional[str]) -> Optional[QaTreeNode]:
        if node_id is None:
            return None
        return self.index.get(node_id)

    def get_node_by_id(self, node_id: str) -> QaTreeNode:
        node = self.find_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def add_node(self, parent_id: str, node: QaTreeNode) -> QaTreeNode:
        parent = self.index.get(parent_id)
        if parent is None:
            raise ParentNotFoundError(parent_id)
        if node.id in self.index:
            raise DuplicateNodeError(node.id)
        # Adopting a detached subtree must not bring in ids we already own
        incoming = list(self._walk(node))
        for n in incoming:
            if n.id in self.index:
                raise DuplicateNodeError(n.id)
        parent.append(node)
        for n in incoming:
            self.index[n.id] = n
        return node

    def update_answer(self, node_id: str, answer: Any) -> QaTreeNode:
        node = self.get_node_by_id(node_id)
        # coerce first so a rejected answer leaves the node untouched
        node.question.answer = node.question.coerce_answer(answer)
        node.touch()
        return node

    def remove_node(self, node_id: str) -> List[str]:
        """Remove a node and its whole subtree. Returns the removed ids."""
        node = self.get_node_by_id(node_id)
        if node_id == self.root.id:
            raise RootRemovalForbiddenError(node_id)

        removed = [n.id for n in self._walk(node)]
        for nid in removed:
            del self.index[nid]

        parent = self.index.get(node.parent_id)
        if parent is not None:
            parent.remove_child(node_id)
        node.parent_id = None
        return removed

    def descendants(self, node_id: str) -> List[QaTreeNode]:
        node = self.get_node_by_id(node_id)
        return [n for n in self._walk(node) if n.id != node_id]

    def path_to(self, node_id: str) -> List[QaTreeNode]:
        """Nodes from the root down to ``node_id``, following parent links."""
        path = []
        node = self.get_node_by_id(node_id)
        while node is not None:
            path.append(node)
            node = self.index.get(node.parent_id) if node.parent_id else None
        path.reverse()
        return path

    def filter_by_answer(self, exclude_id: Optional[str]) -> "QaTree":
        """
        Copy of the tree holding the root plus every answered descendant that is
        not ``exclude_id`` or below it. An unanswered node prunes its subtree.
        """
        if exclude_id is not None and exclude_id == self.root.id:
            raise RootRemovalForbiddenError(exclude_id, "The root node cannot be excluded from a filtered view")

        def copy_node(node: QaTreeNode) -> QaTreeNode:
            clone = node.model_copy(update={"children": {}}, deep=False)
            clone.question = node.question.model_copy(deep=True)
            for child in node.children.values():
                if child.id == exclude_id or not child.question.has_answer():
                    continue
                clone.append(copy_node(child))
            return clone

        return QaTree(copy_node(self.root))


QaTreeNode.model_rebuild()
