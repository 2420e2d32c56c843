import json
from typing import Dict, List, Optional
from promptlab.models.qa_tree import QaTree, QaTreeNode
from promptlab.models.question import BaseQuestion, FormQuestion


def question_text(question: BaseQuestion) -> str:
    text = question.question or ""
    if isinstance(question, FormQuestion) and question.fields:
        # The model needs the field definitions to make sense of a form answer
        fields = [
            {
                "id": f.id,
                "question": f.question,
                "type": f.type,
                "options": [o.model_dump() for o in f.options] if f.options else None,
                "desc": f.desc,
            }
            for f in question.fields
        ]
        text = text + ":" + json.dumps(fields, ensure_ascii=False)
    return text


def node_to_json(node: QaTreeNode, parent_id: Optional[str]) -> Dict[str, Optional[str]]:
    return {
        "nodeId": node.id,
        "parentId": parent_id,
        "question": question_text(node.question),
        "answer": node.question.answer_text(),
    }


def serialize_tree(tree: Optional[QaTree]) -> List[Dict[str, Optional[str]]]:
    """Preorder list of nodes, the context format handed to the model."""
    if tree is None or tree.root is None:
        return []

    result = []
    stack = [(tree.root, None)]
    while stack:
        node, parent_id = stack.pop()
        result.append(node_to_json(node, parent_id))
        for child in reversed(list(node.children.values())):
            stack.append((child, node.id))
    return result


def serialize_tree_json(tree: Optional[QaTree]) -> str:
    return json.dumps(serialize_tree(tree), ensure_ascii=False)
