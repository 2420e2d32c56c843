from typing import Optional


class ConversationError(Exception):
    """Base class for every failure the interview engine reports to callers."""

    code = "conversation_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SessionNotFoundError(ConversationError):
    code = "session_not_found"
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionNotOwnedError(ConversationError):
    code = "session_not_owned"
    status_code = 403

    def __init__(self, session_id: str, user_id: str):
        super().__init__(f"Session {session_id} does not belong to user {user_id}")
        self.session_id = session_id
        self.user_id = user_id


class NodeNotFoundError(ConversationError):
    code = "node_not_found"
    status_code = 404

    def __init__(self, node_id: str, message: Optional[str] = None):
        super().__init__(message or f"Node not found: {node_id}")
        self.node_id = node_id


class NodeNotCurrentError(NodeNotFoundError):
    code = "node_not_current"
    status_code = 409

    def __init__(self, node_id: str, current_node_id: Optional[str]):
        super().__init__(node_id, f"Node {node_id} is not the current node ({current_node_id})")
        self.current_node_id = current_node_id


class ParentNotFoundError(ConversationError):
    code = "parent_not_found"
    status_code = 500

    def __init__(self, parent_id: str):
        super().__init__(f"Parent node not found: {parent_id}")
        self.parent_id = parent_id


class DuplicateNodeError(ConversationError):
    code = "duplicate_node"
    status_code = 500

    def __init__(self, node_id: str):
        super().__init__(f"Node id already in tree: {node_id}")
        self.node_id = node_id


class RootRemovalForbiddenError(ConversationError):
    code = "root_removal_forbidden"

    def __init__(self, node_id: str, message: Optional[str] = None):
        super().__init__(message or f"The root node {node_id} cannot be removed")
        self.node_id = node_id


class AnswerShapeMismatchError(ConversationError):
    code = "answer_shape_mismatch"

    def __init__(self, question_type: str, reason: str):
        super().__init__(f"Answer does not fit a '{question_type}' question: {reason}")
        self.question_type = question_type
        self.reason = reason


class AIServiceError(ConversationError):
    code = "ai_service_failure"
    status_code = 502


class QuestionParseError(ConversationError):
    code = "question_parse_error"

    def __init__(self, message: str, content: Optional[str], failure_reason: str):
        super().__init__(message)
        self.content = content
        self.failure_reason = failure_reason

    def __str__(self):
        return f"{self.message} ({self.failure_reason})"
