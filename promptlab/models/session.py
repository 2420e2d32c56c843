import asyncio
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from promptlab.models.qa_tree import QaTree

DEFAULT_USER_TARGET = "General conversation"


class ConversationSession:
    """
    One user's interview. Owns exactly one tree and the counter that hands out
    its node ids; ``lock`` must be held for any change to the tree.
    """

    def __init__(self, user_id: str, session_id: str, tree: Optional[QaTree] = None, ai_model: Optional[str] = None):
        self.session_id = session_id
        self.user_id = user_id
        self.tree = tree
        self.current_node_id: Optional[str] = None
        self.created_at = datetime.now(timezone.utc)
        self.updated_at = self.created_at
        self.closed = False

        # Profile handed to the prompt synthesizer
        self.user: Optional[str] = None
        self.user_target = DEFAULT_USER_TARGET
        self.ai_model = ai_model

        self.lock = asyncio.Lock()
        self._node_id_counter = 0
        self._counter_lock = threading.Lock()

    def next_node_id(self) -> str:
        with self._counter_lock:
            self._node_id_counter += 1
            return str(self._node_id_counter)

    @property
    def node_id_counter(self) -> int:
        return self._node_id_counter

    def touch(self):
        self.updated_at = datetime.now(timezone.utc)

    def set_current_node(self, node_id: Optional[str]):
        self.current_node_id = node_id
        self.touch()

    def summary(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "currentNodeId": self.current_node_id,
            "nodeCount": len(self.tree) if self.tree else 0,
            "userTarget": self.user_target,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
