import json
from typing import Optional
from pydantic import BaseModel
from promptlab.core.errors import AIServiceError, QuestionParseError
from promptlab.core.log import global_log
from promptlab.models.question import Question, extract_json_object, parse_question


class QuestionGenerationRequest(BaseModel):
    global_prompt: str = ""
    conversation_tree: str = "[]"
    user_input: str = ""
    user_profile: Optional[str] = None


class QuestionGenerationResult(BaseModel):
    question: Question
    parent_id: Optional[str] = None


class PromptSynthesisRequest(BaseModel):
    prompt: str
    user: Optional[str] = None
    user_target: Optional[str] = None
    ai_model: Optional[str] = None
    user_conversation: str = "[]"


def build_question_prompt(request: QuestionGenerationRequest) -> str:
    parts = []
    if request.global_prompt and request.global_prompt.strip():
        parts.append(request.global_prompt.strip())
    if request.user_profile and request.user_profile.strip():
        parts.append(f"## User profile\n{request.user_profile.strip()}")
    if request.conversation_tree and request.conversation_tree.strip():
        parts.append(f"## Conversation tree\n{request.conversation_tree}")
    parts.append(f"## Current user input\n{request.user_input}")
    return "\n\n".join(parts)


def parse_generation_result(text: str) -> QuestionGenerationResult:
    data = extract_json_object(text)
    # Either {"question": {...}, "parentId": ...} or a bare question object
    if isinstance(data.get("question"), dict):
        question = parse_question(data["question"])
        parent_id = data.get("parentId", data.get("parent_id"))
    else:
        question = parse_question(data)
        parent_id = None
    return QuestionGenerationResult(question=question, parent_id=str(parent_id) if parent_id is not None else None)


class QuestionGenerator:
    """Asks the model for the next interview question."""

    def __init__(self, llm_service):
        self.llm_service = llm_service

    async def generate(self, session_id: str, request: QuestionGenerationRequest) -> QuestionGenerationResult:
        prompt = build_question_prompt(request)
        # Use a unique id for this session to prevent cross-session memory
        llm_user_id = f"interview_{session_id}"
        try:
            response_text = await self.llm_service.generate_response(llm_user_id, prompt)
        except AIServiceError:
            raise
        except Exception as e:
            raise AIServiceError(f"Question generation failed: {e}") from e

        try:
            result = parse_generation_result(response_text)
        except QuestionParseError as e:
            global_log(f"Could not parse generated question - session: {session_id}, reason: {e.failure_reason}", level="WARNING")
            raise AIServiceError(f"Unparseable question from model: {e.failure_reason}") from e

        global_log(f"Generated '{result.question.type}' question - session: {session_id}, parent: {result.parent_id}")
        return result


class PromptSynthesizer:
    """Turns a finished interview into the final prompt text."""

    def __init__(self, llm_service):
        self.llm_service = llm_service

    async def generate(self, session_id: str, request: PromptSynthesisRequest) -> str:
        prompt = json.dumps(request.model_dump(), ensure_ascii=False)
        try:
            response = await self.llm_service.generate_response(f"interview_synth_{session_id}", prompt)
        except AIServiceError:
            raise
        except Exception as e:
            raise AIServiceError(f"Prompt synthesis failed: {e}") from e
        if not response or not response.strip():
            raise AIServiceError("Model returned an empty prompt")
        return response.strip()
