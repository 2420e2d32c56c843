import pytest
from promptlab.core.errors import (
    AnswerShapeMismatchError,
    DuplicateNodeError,
    NodeNotFoundError,
    ParentNotFoundError,
    RootRemovalForbiddenError,
)
from promptlab.models.qa_tree import QaTree, QaTreeNode
from promptlab.models.question import InputQuestion, SingleChoiceQuestion

def make_node(node_id, text="Q", answer=None):
    return QaTreeNode(id=node_id, question=InputQuestion(question=text, answer=answer))

def build_tree():
    # 1 -> 2 -> 3, 1 -> 4
    tree = QaTree.create_root(InputQuestion(question="start"), "1")
    tree.add_node("1", make_node("2", "Name?", "Ada"))
    tree.add_node("2", make_node("3", "Age?", "36"))
    tree.add_node("1", make_node("4", "Goal?"))
    return tree

def test_add_and_lookup():
    tree = build_tree()
    assert len(tree) == 4
    assert "3" in tree
    assert tree.get_node_by_id("3").parent_id == "2"
    assert tree.find_node("99") is None
    assert [n.id for n in tree] == ["1", "2", "3", "4"]
    assert [n.id for n in tree.path_to("3")] == ["1", "2", "3"]

def test_add_node_errors():
    tree = build_tree()
    with pytest.raises(ParentNotFoundError):
        tree.add_node("99", make_node("5"))
    with pytest.raises(DuplicateNodeError):
        tree.add_node("1", make_node("3"))
    assert len(tree) == 4

def test_add_subtree_with_clashing_id():
    tree = build_tree()
    subtree = make_node("5")
    subtree.append(make_node("2"))
    with pytest.raises(DuplicateNodeError):
        tree.add_node("1", subtree)
    assert "5" not in tree

def test_remove_cascades():
    tree = build_tree()
    removed = tree.remove_node("2")
    assert sorted(removed) == ["2", "3"]
    assert "2" not in tree
    assert "3" not in tree
    assert list(tree.root.children) == ["4"]
    with pytest.raises(NodeNotFoundError):
        tree.get_node_by_id("3")

def test_root_protection():
    tree = build_tree()
    with pytest.raises(RootRemovalForbiddenError):
        tree.remove_node("1")
    with pytest.raises(RootRemovalForbiddenError):
        tree.filter_by_answer("1")
    assert len(tree) == 4

def test_remove_missing_node():
    tree = build_tree()
    with pytest.raises(NodeNotFoundError):
        tree.remove_node("42")

def test_filter_excludes_branch_and_unanswered():
    tree = build_tree()
    view = tree.filter_by_answer("2")
    # "2" excluded with its subtree, "4" has no answer
    assert [n.id for n in view] == ["1"]

    view = tree.filter_by_answer(None)
    assert [n.id for n in view] == ["1", "2", "3"]

    # The view is a copy
    view.get_node_by_id("2").question.answer = "changed"
    assert tree.get_node_by_id("2").question.answer == "Ada"

def test_update_answer_shape_guard():
    tree = QaTree.create_root(InputQuestion(question="start"), "1")
    choice = SingleChoiceQuestion(question="Pick", options=[{"id": "a", "label": "A"}])
    tree.add_node("1", QaTreeNode(id="2", question=choice))

    with pytest.raises(AnswerShapeMismatchError):
        tree.update_answer("2", "a")
    assert tree.get_node_by_id("2").question.answer is None

    node = tree.update_answer("2", ["a"])
    assert node.question.answer == ["a"]

def test_duplicate_ids_in_constructor():
    root = make_node("1")
    child = make_node("2")
    child.append(make_node("1"))
    root.append(child)
    with pytest.raises(DuplicateNodeError):
        QaTree(root)

def test_descendants():
    tree = build_tree()
    assert [n.id for n in tree.descendants("1")] == ["2", "3", "4"]
    assert tree.descendants("3") == []
