import json
from promptlab.models.qa_tree import QaTree, QaTreeNode
from promptlab.models.question import FormQuestion, InputQuestion, SingleChoiceQuestion
from promptlab.services.tree_serializer import serialize_tree, serialize_tree_json

def test_serialize_preorder():
    tree = QaTree.create_root(InputQuestion(question="start"), "1")
    tree.add_node("1", QaTreeNode(id="2", question=InputQuestion(question="Name?", answer="Ada")))
    choice = SingleChoiceQuestion(question="Lang?", options=[{"id": "py", "label": "Python"}], answer=["py"])
    tree.add_node("2", QaTreeNode(id="3", question=choice))
    tree.add_node("1", QaTreeNode(id="4", question=InputQuestion(question="Goal?")))

    nodes = serialize_tree(tree)
    assert [n["nodeId"] for n in nodes] == ["1", "2", "3", "4"]
    assert nodes[0] == {"nodeId": "1", "parentId": None, "question": "start", "answer": ""}
    assert nodes[1]["answer"] == "Ada"
    assert nodes[2]["parentId"] == "2"
    assert nodes[2]["answer"] == "Python"
    assert nodes[3]["answer"] == ""

def test_serialize_form_includes_fields():
    form = FormQuestion(question="Details", fields=[{"id": "age", "question": "Age?"}])
    tree = QaTree.create_root(form, "1")
    text = serialize_tree(tree)[0]["question"]
    assert text.startswith("Details:")
    fields = json.loads(text[len("Details:"):])
    assert fields[0]["id"] == "age"

def test_serialize_empty():
    assert serialize_tree(None) == []
    assert serialize_tree_json(None) == "[]"
