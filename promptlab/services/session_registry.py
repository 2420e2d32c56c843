import threading
import time
import uuid
from typing import Dict, List, Optional
from promptlab.core import config
from promptlab.core.errors import SessionNotFoundError, SessionNotOwnedError
from promptlab.core.log import global_log
from promptlab.models.qa_tree import QaTree
from promptlab.models.question import InputQuestion
from promptlab.models.session import ConversationSession

ROOT_QUESTION = "start"


class SessionRegistry:
    """
    In-memory store of interview sessions, keyed by user.

    The lock only protects the two maps; changes inside one session's tree go
    through that session's own lock.
    """

    def __init__(self, multi_session: Optional[bool] = None, max_sessions_per_user: Optional[int] = None, ai_model: Optional[str] = None):
        self.multi_session = config.MULTI_SESSION if multi_session is None else multi_session
        self.max_sessions_per_user = config.MAX_SESSIONS_PER_USER if max_sessions_per_user is None else max_sessions_per_user
        self.ai_model = ai_model or config.MODEL_NAME
        self.user_sessions: Dict[str, List[str]] = {}
        self.sessions: Dict[str, ConversationSession] = {}
        self._lock = threading.RLock()

    def create_session(self, user_id: str, question_text: str = ROOT_QUESTION) -> ConversationSession:
        session = ConversationSession(user_id, str(uuid.uuid4()), ai_model=self.ai_model)
        # The root is always the first allocation, so its id is "1"
        root_id = session.next_node_id()
        session.tree = QaTree.create_root(InputQuestion(question=question_text), root_id)
        session.current_node_id = root_id

        with self._lock:
            owned = self.user_sessions.setdefault(user_id, [])
            if not self.multi_session:
                for old_id in list(owned):
                    self._drop(old_id)
            elif self.max_sessions_per_user > 0:
                while len(owned) >= self.max_sessions_per_user:
                    self._drop(owned[0])
            self.user_sessions.setdefault(user_id, []).append(session.session_id)
            self.sessions[session.session_id] = session

        global_log(f"Created session - user: {user_id}, session: {session.session_id}, root: {root_id}")
        return session

    def get_session(self, user_id: str, session_id: str) -> ConversationSession:
        with self._lock:
            session = self.sessions.get(session_id)
        if session is None:
            global_log(f"Session not found - user: {user_id}, session: {session_id}", level="WARNING")
            raise SessionNotFoundError(session_id)
        if session.user_id != user_id:
            global_log(f"Session not owned - user: {user_id}, session: {session_id}, owner: {session.user_id}", level="WARNING")
            raise SessionNotOwnedError(session_id, user_id)
        return session

    def get_session_by_id(self, session_id: str) -> ConversationSession:
        with self._lock:
            session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def validate_node_ownership(self, session_id: str, node_id: Optional[str]) -> bool:
        with self._lock:
            session = self.sessions.get(session_id)
        if session is None:
            global_log(f"Session not found: {session_id}", level="WARNING")
            return False
        exists = session.tree is not None and session.tree.has_node(node_id)
        if not exists:
            global_log(f"Node not found - session: {session_id}, node: {node_id}", level="WARNING")
        return exists

    def user_owns_session(self, user_id: str, session_id: str) -> bool:
        with self._lock:
            return session_id in self.user_sessions.get(user_id, [])

    def get_user_session_ids(self, user_id: str) -> List[str]:
        with self._lock:
            return list(self.user_sessions.get(user_id, []))

    def get_user_sessions(self, user_id: str) -> List[ConversationSession]:
        with self._lock:
            return [self.sessions[sid] for sid in self.user_sessions.get(user_id, []) if sid in self.sessions]

    def get_user_latest_session(self, user_id: str) -> Optional[ConversationSession]:
        with self._lock:
            ids = self.user_sessions.get(user_id)
            if not ids:
                return None
            return self.sessions.get(ids[-1])

    def _drop(self, session_id: str) -> Optional[ConversationSession]:
        session = self.sessions.pop(session_id, None)
        if session is None:
            return None
        owned = self.user_sessions.get(session.user_id)
        if owned is not None:
            if session_id in owned:
                owned.remove(session_id)
            if not owned:
                del self.user_sessions[session.user_id]
        # Work in flight on this session sees it as gone once it resumes
        session.closed = True
        session.tree = None
        session.current_node_id = None
        return session

    def remove_session(self, session_id: str) -> bool:
        with self._lock:
            session = self._drop(session_id)
        if session is None:
            return False
        global_log(f"Removed session - user: {session.user_id}, session: {session_id}")
        return True

    def remove_all_user_sessions(self, user_id: str) -> int:
        with self._lock:
            ids = list(self.user_sessions.get(user_id, []))
            for sid in ids:
                self._drop(sid)
        if ids:
            global_log(f"Removed all sessions - user: {user_id}, count: {len(ids)}")
        return len(ids)

    def get_session_stats(self) -> Dict:
        with self._lock:
            counts = {uid: len(ids) for uid, ids in self.user_sessions.items()}
            total = len(self.sessions)
        return {
            "totalSessions": total,
            "activeUsers": len(counts),
            "userSessionCounts": counts,
            "averageSessionsPerUser": (sum(counts.values()) / len(counts)) if counts else 0,
            "timestamp": int(time.time() * 1000),
        }

    def close(self):
        with self._lock:
            count = len(self.sessions)
            for sid in list(self.sessions):
                self._drop(sid)
        global_log(f"Session registry closed, dropped {count} session(s)")
