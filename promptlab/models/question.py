import json
import re
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator
from promptlab.core.errors import AnswerShapeMismatchError, QuestionParseError

QUESTION_TYPES = ("input", "single", "multi", "form")


class Option(BaseModel):
    id: str
    label: str


class FormField(BaseModel):
    id: str
    question: str
    type: Literal["input", "single", "multi"] = "input"
    options: Optional[List[Option]] = None
    desc: Optional[str] = None
    weight: Optional[str] = None

    @field_validator("weight", mode="before")
    @classmethod
    def _weight_to_str(cls, v):
        # Models sometimes emit the weight as a number
        if v is None or isinstance(v, str):
            return v
        return str(v)


class FormAnswerItem(BaseModel):
    id: str
    value: List[str] = []


_FORM_ANSWER_ADAPTER = TypeAdapter(List[FormAnswerItem])


class BaseQuestion(BaseModel):
    """Common shape of every question the interviewer can ask."""

    model_config = ConfigDict(extra="ignore")

    # Keys that only make sense on another variant; seeing one means the tag lies.
    foreign_keys: ClassVar[Tuple[str, ...]] = ()

    question: str
    desc: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _reject_foreign_keys(cls, data):
        if isinstance(data, dict):
            for key in cls.foreign_keys:
                if data.get(key):
                    raise ValueError(f"'{key}' is not valid for a '{data.get('type')}' question")
        return data

    def has_answer(self) -> bool:
        return bool(self.answer)

    def set_answer(self, answer: Any):
        self.answer = self.coerce_answer(answer)

    def coerce_answer(self, answer: Any):
        raise NotImplementedError

    def answer_text(self) -> str:
        raise NotImplementedError


class InputQuestion(BaseQuestion):
    foreign_keys: ClassVar[Tuple[str, ...]] = ("options", "fields")

    type: Literal["input"] = "input"
    answer: Optional[str] = None

    @field_validator("question")
    @classmethod
    def _question_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("input question text is empty")
        return v

    def coerce_answer(self, answer: Any) -> str:
        if not isinstance(answer, str):
            raise AnswerShapeMismatchError(self.type, f"expected a string, got {type(answer).__name__}")
        return answer

    def answer_text(self) -> str:
        return self.answer or ""


class _ChoiceQuestion(BaseQuestion):
    foreign_keys: ClassVar[Tuple[str, ...]] = ("fields",)

    options: List[Option]
    answer: Optional[List[str]] = None

    @field_validator("options")
    @classmethod
    def _options_not_empty(cls, v: List[Option]) -> List[Option]:
        if not v:
            raise ValueError("choice question has no options")
        return v

    def coerce_answer(self, answer: Any) -> List[str]:
        if not isinstance(answer, list) or not all(isinstance(a, str) for a in answer):
            raise AnswerShapeMismatchError(self.type, "expected a list of option ids")
        known = {option.id for option in self.options}
        unknown = [a for a in answer if a not in known]
        if unknown:
            raise AnswerShapeMismatchError(self.type, f"unknown option id(s): {', '.join(unknown)}")
        return list(answer)

    def option_label(self, option_id: str) -> str:
        for option in self.options:
            if option.id == option_id:
                return option.label
        return option_id

    def answer_text(self) -> str:
        if not self.answer:
            return ""
        return ",".join(self.option_label(a) for a in self.answer)


class SingleChoiceQuestion(_ChoiceQuestion):
    type: Literal["single"] = "single"

    def coerce_answer(self, answer: Any) -> List[str]:
        selected = super().coerce_answer(answer)
        if len(selected) > 1:
            raise AnswerShapeMismatchError(self.type, "only one option may be selected")
        return selected


class MultipleChoiceQuestion(_ChoiceQuestion):
    type: Literal["multi"] = "multi"


class FormQuestion(BaseQuestion):
    foreign_keys: ClassVar[Tuple[str, ...]] = ("options",)

    type: Literal["form"] = "form"
    fields: List[FormField]
    answer: Optional[List[FormAnswerItem]] = None

    @field_validator("fields")
    @classmethod
    def _fields_not_empty(cls, v: List[FormField]) -> List[FormField]:
        if not v:
            raise ValueError("form question has no fields")
        return v

    def coerce_answer(self, answer: Any) -> List[FormAnswerItem]:
        if not isinstance(answer, list):
            raise AnswerShapeMismatchError(self.type, "expected a list of {id, value} items")
        items = [a.model_dump() if isinstance(a, FormAnswerItem) else a for a in answer]
        if not all(isinstance(i, dict) for i in items):
            raise AnswerShapeMismatchError(self.type, "expected a list of {id, value} items")
        try:
            parsed = _FORM_ANSWER_ADAPTER.validate_python(items)
        except ValidationError as e:
            raise AnswerShapeMismatchError(self.type, str(e)) from e
        known = {field.id for field in self.fields}
        unknown = [item.id for item in parsed if item.id not in known]
        if unknown:
            raise AnswerShapeMismatchError(self.type, f"unknown field id(s): {', '.join(unknown)}")
        return parsed

    def answer_text(self) -> str:
        if not self.answer:
            return ""
        return json.dumps([item.model_dump() for item in self.answer], ensure_ascii=False)


Question = Annotated[
    Union[InputQuestion, SingleChoiceQuestion, MultipleChoiceQuestion, FormQuestion],
    Field(discriminator="type"),
]

_QUESTION_ADAPTER = TypeAdapter(Question)


def parse_question(data: Any) -> BaseQuestion:
    """Decode a question by its type tag. Anything that does not match the tag is rejected."""
    raw = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False, default=str)
    if not isinstance(data, dict):
        raise QuestionParseError("Question must be a JSON object", raw, f"got {type(data).__name__}")

    q_type = data.get("type")
    if not q_type:
        raise QuestionParseError("Question has no type", raw, "missing 'type' field")
    if q_type not in QUESTION_TYPES:
        raise QuestionParseError("Unknown question type", raw, f"'{q_type}' is not one of {', '.join(QUESTION_TYPES)}")

    try:
        return _QUESTION_ADAPTER.validate_python(data)
    except ValidationError as e:
        reasons = "; ".join(err["msg"] for err in e.errors())
        raise QuestionParseError(f"Invalid '{q_type}' question", raw, reasons) from e


def extract_json_object(text: str) -> Dict[str, Any]:
    if not text or not text.strip():
        raise QuestionParseError("Empty model output", text, "nothing to parse")

    # Basic JSON extraction in case there's markdown wrapping
    json_match = re.search(r"\{.*\}", text, re.DOTALL)
    if not json_match:
        raise QuestionParseError("No JSON object in model output", text, "no '{...}' block found")
    try:
        data = json.loads(json_match.group(0))
    except json.JSONDecodeError as e:
        raise QuestionParseError("Malformed JSON in model output", text, str(e)) from e
    if not isinstance(data, dict):
        raise QuestionParseError("Model output is not a JSON object", text, type(data).__name__)
    return data


def parse_question_json(text: str) -> BaseQuestion:
    return parse_question(extract_json_object(text))
