import json
import pytest
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch
from promptlab.core.errors import AIServiceError
from promptlab.services.llm_service import GeminiCliService

def make_proc(stdout_lines, stderr_lines=(), returncode=0):
    proc = MagicMock()
    proc.stdin = MagicMock()
    proc.stdin.drain = AsyncMock()
    proc.wait = AsyncMock(return_value=returncode)
    proc.returncode = returncode

    stdout = asyncio.Queue()
    for line in stdout_lines:
        stdout.put_nowait(line)
    stdout.put_nowait(b"")
    proc.stdout.readline = stdout.get

    stderr = asyncio.Queue()
    for line in stderr_lines:
        stderr.put_nowait(line)
    stderr.put_nowait(b"")
    proc.stderr.readline = stderr.get
    return proc

def message(text):
    return (json.dumps({"type": "message", "role": "assistant", "content": text}) + "\n").encode()

@pytest.mark.asyncio
async def test_generate_response_aggregates_messages(tmp_path):
    service = GeminiCliService(model="m1", fallback_model="m2", working_dir=str(tmp_path))
    proc = make_proc([
        json.dumps({"type": "init", "model": "m1"}).encode() + b"\n",
        message("Hello "),
        message("world"),
    ])
    with patch("promptlab.services.llm_service.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as create:
        result = await service.generate_response("interview_s1", "prompt text")

    assert result == "Hello world"
    args = create.call_args.args
    assert "--output-format" in args
    assert args[args.index("--model") + 1] == "m1"
    proc.stdin.write.assert_called_once_with(b"prompt text")

@pytest.mark.asyncio
async def test_nonzero_exit_raises(tmp_path):
    service = GeminiCliService(model="m1", fallback_model=None, working_dir=str(tmp_path))
    service.fallback_model = None
    proc = make_proc([], stderr_lines=[b"fatal: bad auth\n"], returncode=1)
    with patch("promptlab.services.llm_service.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        with pytest.raises(AIServiceError, match="bad auth"):
            await service.generate_response("interview_s1", "prompt")

@pytest.mark.asyncio
async def test_capacity_error_switches_model(tmp_path):
    service = GeminiCliService(model="m1", fallback_model="m2", working_dir=str(tmp_path))
    busy = make_proc([json.dumps({"type": "error", "message": "429 capacity exhausted"}).encode() + b"\n"])
    busy.returncode = None
    ok = make_proc([message("from fallback")])

    with patch("promptlab.services.llm_service.asyncio.create_subprocess_exec", AsyncMock(side_effect=[busy, ok])) as create:
        result = await service.generate_response("interview_s1", "prompt")

    assert result == "from fallback"
    second_args = create.call_args_list[1].args
    assert second_args[second_args.index("--model") + 1] == "m2"
    busy.terminate.assert_called()

@pytest.mark.asyncio
async def test_missing_binary_raises(tmp_path):
    service = GeminiCliService(working_dir=str(tmp_path))
    with patch("promptlab.services.llm_service.asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("gemini"))):
        with pytest.raises(AIServiceError):
            await service.generate_response("interview_s1", "prompt")
