from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from promptlab.models.question import FormAnswerItem, Question


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnswerRequest(CamelModel):
    session_id: Optional[str] = None
    node_id: Optional[str] = None
    question_type: str
    answer: Union[str, List[str], List[FormAnswerItem]]
    context: Optional[Dict[str, Any]] = None

    @field_validator("question_type")
    @classmethod
    def _normalize_type(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("questionType must not be blank")
        return v

    def answer_string(self) -> str:
        if isinstance(self.answer, str):
            return self.answer
        parts = []
        for item in self.answer:
            if isinstance(item, FormAnswerItem):
                if item.value:
                    parts.append(f"{item.id}: {', '.join(item.value)}")
            else:
                parts.append(item)
        return "; ".join(parts) if self.question_type == "form" else ", ".join(parts)


class RetryRequest(BaseModel):
    node_id: str = Field(alias="nodeId", min_length=1)
    session_id: str = Field(alias="sessionId", min_length=1)
    whyretry: str = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class GenPromptRequest(CamelModel):
    session_id: str = Field(min_length=1)


class QuestionEvent(CamelModel):
    question: Question
    current_node_id: str
    parent_node_id: str


class SubmitResult(CamelModel):
    session_id: str
    current_node_id: Optional[str] = None
    parent_node_id: Optional[str] = None
    fallback: bool = False


class SetUserProfileRequest(CamelModel):
    session_id: str = Field(min_length=1)
    user_profile: str = Field(min_length=1)
    user_target: Optional[str] = None
