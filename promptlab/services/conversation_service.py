import asyncio
import json
from typing import Optional, Tuple
from promptlab.core import config
from promptlab.core.errors import (
    AIServiceError,
    AnswerShapeMismatchError,
    ConversationError,
    NodeNotCurrentError,
    NodeNotFoundError,
    ParentNotFoundError,
    RootRemovalForbiddenError,
    SessionNotFoundError,
)
from promptlab.core.log import global_log, log_error
from promptlab.core.prompts import (
    FALLBACK_PROMPT,
    FALLBACK_QUESTION,
    FALLBACK_QUESTION_DESC,
    GEN_PROMPT_AGENT_PROMPT,
    GLOBAL_PROMPT,
    RETRY_PROMPT,
)
from promptlab.models.dto import AnswerRequest, QuestionEvent, RetryRequest, SubmitResult
from promptlab.models.qa_tree import QaTree, QaTreeNode
from promptlab.models.question import BaseQuestion, InputQuestion
from promptlab.models.session import ConversationSession
from promptlab.services.notification_service import NotificationService
from promptlab.services.question_generator import (
    PromptSynthesisRequest,
    PromptSynthesizer,
    QuestionGenerationRequest,
    QuestionGenerator,
)
from promptlab.services.session_registry import SessionRegistry
from promptlab.services.tree_serializer import serialize_tree_json


class ConversationService:
    """
    Drives the interview: applies answers, asks the model for the next
    question, handles retries and announces every new node to the user.

    Every operation on a session runs under that session's lock, so an answer
    and a retry for the same node can never both act on the same state.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        notifier: NotificationService,
        question_generator: QuestionGenerator,
        prompt_synthesizer: Optional[PromptSynthesizer] = None,
        ai_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.notifier = notifier
        self.question_generator = question_generator
        self.prompt_synthesizer = prompt_synthesizer
        self.ai_timeout = config.AI_TIMEOUT_SECONDS if ai_timeout is None else ai_timeout

    @staticmethod
    def _tree(session: ConversationSession) -> QaTree:
        # A removed session has its tree freed
        if session.closed or session.tree is None:
            raise SessionNotFoundError(session.session_id)
        return session.tree

    def _apply_answer(self, session: ConversationSession, request: AnswerRequest) -> QaTreeNode:
        tree = self._tree(session)
        node_id = request.node_id or session.current_node_id
        if not node_id:
            raise NodeNotFoundError("", "Session has no current node to answer")
        node = tree.get_node_by_id(node_id)
        if node_id != session.current_node_id:
            raise NodeNotCurrentError(node_id, session.current_node_id)

        q_type = node.question.type
        if request.question_type != q_type:
            raise AnswerShapeMismatchError(q_type, f"declared question type is '{request.question_type}'")
        value = node.question.coerce_answer(request.answer)
        if not value or (isinstance(value, str) and not value.strip()):
            raise AnswerShapeMismatchError(q_type, "answer is empty")

        tree.update_answer(node_id, value)
        session.touch()
        global_log(f"Answer applied - session: {session.session_id}, node: {node_id}, type: {q_type}")
        return node

    async def _next_question(self, session: ConversationSession, request: QuestionGenerationRequest, default_parent: str) -> Tuple[BaseQuestion, str, bool]:
        """Returns (question, parent id, used fallback). Model failures never escape."""
        try:
            result = await asyncio.wait_for(
                self.question_generator.generate(session.session_id, request),
                timeout=self.ai_timeout,
            )
        except asyncio.TimeoutError:
            log_error(AIServiceError(f"timed out after {self.ai_timeout}s"), f"Question generation - session: {session.session_id}")
            return self._fallback_question(), default_parent, True
        except AIServiceError as e:
            log_error(e, f"Question generation - session: {session.session_id}")
            return self._fallback_question(), default_parent, True

        # The session may have been removed while the model was working
        tree = self._tree(session)
        parent_id = result.parent_id
        if not parent_id or not tree.has_node(parent_id):
            if parent_id:
                global_log(f"Model picked unknown parent {parent_id}, using {default_parent} - session: {session.session_id}", level="WARNING")
            parent_id = default_parent
        return result.question, parent_id, False

    @staticmethod
    def _fallback_question() -> InputQuestion:
        return InputQuestion(question=FALLBACK_QUESTION, desc=FALLBACK_QUESTION_DESC)

    def _deliver(self, session: ConversationSession, event: QuestionEvent):
        payload = event.model_dump(by_alias=True, mode="json", exclude_none=True)
        try:
            self.notifier.notify(session.user_id, "question", payload)
        except Exception as e:
            # A broken listener must not undo the tree change already made
            log_error(e, f"Listener failed - session: {session.session_id}")

    def announce(self, session: ConversationSession, question: BaseQuestion, parent_id: str) -> QuestionEvent:
        """Append ``question`` under ``parent_id`` and tell the user about it."""
        tree = self._tree(session)
        node_id = session.next_node_id()
        try:
            tree.add_node(parent_id, QaTreeNode(id=node_id, question=question))
        except ParentNotFoundError as e:
            log_error(e, f"Degraded delivery, node {node_id} not stored - session: {session.session_id}")
            self._deliver(session, QuestionEvent(question=question, current_node_id=parent_id, parent_node_id=parent_id))
            raise

        event = QuestionEvent(question=question, current_node_id=node_id, parent_node_id=parent_id)
        self._deliver(session, event)
        session.set_current_node(node_id)
        return event

    async def submit_answer(self, user_id: str, request: AnswerRequest) -> SubmitResult:
        created = False
        if not request.session_id:
            session = self.registry.create_session(user_id)
            created = True
            global_log(f"New conversation - user: {user_id}, session: {session.session_id}")
        else:
            session = self.registry.get_session(user_id, request.session_id)

        async with session.lock:
            try:
                node = self._apply_answer(session, request)
            except ConversationError:
                if created:
                    self.registry.remove_session(session.session_id)
                raise

            gen_request = QuestionGenerationRequest(
                global_prompt=GLOBAL_PROMPT,
                conversation_tree=serialize_tree_json(session.tree),
                user_input=request.answer_string(),
                user_profile=session.user,
            )
            question, parent_id, fallback = await self._next_question(session, gen_request, default_parent=node.id)
            event = self.announce(session, question, parent_id)

        return SubmitResult(
            session_id=session.session_id,
            current_node_id=event.current_node_id,
            parent_node_id=event.parent_node_id,
            fallback=fallback,
        )

    async def retry(self, user_id: str, request: RetryRequest) -> SubmitResult:
        session = self.registry.get_session(user_id, request.session_id)
        global_log(f"Retry requested - user: {user_id}, session: {session.session_id}, node: {request.node_id}, reason: {request.whyretry}")

        async with session.lock:
            tree = self._tree(session)
            node = tree.get_node_by_id(request.node_id)
            if node.id == tree.root.id:
                raise RootRemovalForbiddenError(node.id)
            if node.id != session.current_node_id:
                raise NodeNotCurrentError(node.id, session.current_node_id)

            parent_id = node.parent_id
            pre_question = node.question.question
            tree.remove_node(node.id)
            session.set_current_node(parent_id)

            view = tree.filter_by_answer(node.id)
            retry_input = {
                "action": "retry",
                "nodeId": node.id,
                "whyRetry": request.whyretry,
                "preQuestion": pre_question,
            }
            gen_request = QuestionGenerationRequest(
                global_prompt=GLOBAL_PROMPT + RETRY_PROMPT,
                conversation_tree=serialize_tree_json(view),
                user_input=json.dumps(retry_input, ensure_ascii=False),
                user_profile=session.user,
            )
            question, _, fallback = await self._next_question(session, gen_request, default_parent=parent_id)
            # A retry always replaces the question under the same parent
            event = self.announce(session, question, parent_id)

        global_log(f"Retry done - session: {session.session_id}, removed: {node.id}, new: {event.current_node_id}")
        return SubmitResult(
            session_id=session.session_id,
            current_node_id=event.current_node_id,
            parent_node_id=event.parent_node_id,
            fallback=fallback,
        )

    async def generate_prompt(self, user_id: str, session_id: str) -> Tuple[str, bool]:
        """Synthesize the final prompt. Returns (text, success)."""
        session = self.registry.get_session(user_id, session_id)

        async with session.lock:
            request = PromptSynthesisRequest(
                prompt=GEN_PROMPT_AGENT_PROMPT,
                user=session.user,
                user_target=session.user_target,
                ai_model=session.ai_model,
                user_conversation=serialize_tree_json(self._tree(session)),
            )
            success = True
            try:
                if self.prompt_synthesizer is None:
                    raise AIServiceError("No prompt synthesizer configured")
                text = await asyncio.wait_for(
                    self.prompt_synthesizer.generate(session.session_id, request),
                    timeout=self.ai_timeout,
                )
            except asyncio.TimeoutError:
                log_error(AIServiceError(f"timed out after {self.ai_timeout}s"), f"Prompt synthesis - session: {session_id}")
                text, success = FALLBACK_PROMPT, False
            except AIServiceError as e:
                log_error(e, f"Prompt synthesis - session: {session_id}")
                text, success = FALLBACK_PROMPT, False
            session.touch()

        self.notifier.notify(user_id, "prompt", {"sessionId": session_id, "prompt": text, "success": success})
        return text, success

    async def set_user_profile(self, user_id: str, session_id: str, user_profile: str, user_target: Optional[str] = None) -> ConversationSession:
        session = self.registry.get_session(user_id, session_id)
        async with session.lock:
            session.user = user_profile
            if user_target:
                session.user_target = user_target
            session.touch()
        return session
