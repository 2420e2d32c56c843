import json
import pytest
from unittest.mock import AsyncMock
from promptlab.core.errors import AIServiceError
from promptlab.models.question import SingleChoiceQuestion
from promptlab.services.question_generator import (
    PromptSynthesisRequest,
    PromptSynthesizer,
    QuestionGenerationRequest,
    QuestionGenerator,
    build_question_prompt,
    parse_generation_result,
)

def test_build_question_prompt_sections():
    prompt = build_question_prompt(QuestionGenerationRequest(
        global_prompt="Interview the user.", conversation_tree='[{"nodeId": "1"}]', user_input="Ada"
    ))
    assert prompt.startswith("Interview the user.")
    assert "## Conversation tree\n[{\"nodeId\": \"1\"}]" in prompt
    assert prompt.endswith("## Current user input\nAda")
    assert "## User profile" not in prompt

    prompt = build_question_prompt(QuestionGenerationRequest(user_input="Ada", user_profile="a chemistry tutor"))
    assert "## User profile\na chemistry tutor" in prompt

def test_parse_wrapped_and_bare_results():
    result = parse_generation_result('{"parentId": 2, "question": {"type": "input", "question": "Why?"}}')
    assert result.parent_id == "2"
    assert result.question.question == "Why?"

    result = parse_generation_result('{"type": "input", "question": "Why?"}')
    assert result.parent_id is None

@pytest.mark.asyncio
async def test_generate_question():
    mock_llm = AsyncMock()
    mock_llm.generate_response.return_value = (
        '```json\n{"parentId": "1", "question": {"type": "single", "question": "Tone?", '
        '"options": [{"id": "f", "label": "Formal"}, {"id": "c", "label": "Casual"}]}}\n```'
    )
    generator = QuestionGenerator(mock_llm)

    result = await generator.generate("s1", QuestionGenerationRequest(user_input="hello"))

    assert isinstance(result.question, SingleChoiceQuestion)
    assert result.parent_id == "1"
    user_id, prompt = mock_llm.generate_response.call_args.args
    assert user_id == "interview_s1"
    assert "hello" in prompt

@pytest.mark.asyncio
async def test_generate_question_invalid_output():
    mock_llm = AsyncMock()
    mock_llm.generate_response.return_value = "Invalid response"
    generator = QuestionGenerator(mock_llm)
    with pytest.raises(AIServiceError):
        await generator.generate("s1", QuestionGenerationRequest(user_input="hello"))

    mock_llm.generate_response.return_value = '{"type": "single", "question": "Tone?", "options": []}'
    with pytest.raises(AIServiceError):
        await generator.generate("s1", QuestionGenerationRequest(user_input="hello"))

@pytest.mark.asyncio
async def test_generate_question_llm_crash():
    mock_llm = AsyncMock()
    mock_llm.generate_response.side_effect = RuntimeError("pipe closed")
    with pytest.raises(AIServiceError, match="pipe closed"):
        await QuestionGenerator(mock_llm).generate("s1", QuestionGenerationRequest())

@pytest.mark.asyncio
async def test_prompt_synthesizer():
    mock_llm = AsyncMock()
    mock_llm.generate_response.return_value = "  You are a poet.  "
    synthesizer = PromptSynthesizer(mock_llm)
    request = PromptSynthesisRequest(prompt="Synthesize", user="alice", user_target="poems", user_conversation="[]")

    assert await synthesizer.generate("s1", request) == "You are a poet."
    _, sent = mock_llm.generate_response.call_args.args
    assert json.loads(sent)["user_target"] == "poems"

    mock_llm.generate_response.return_value = "   "
    with pytest.raises(AIServiceError):
        await synthesizer.generate("s1", request)
