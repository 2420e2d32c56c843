import asyncio
import json
import os
import shutil
from typing import AsyncGenerator, Dict, List, Optional
from promptlab.core import config
from promptlab.core.errors import AIServiceError
from promptlab.core.log import global_log

CAPACITY_KEYWORDS = ["429", "capacity", "quota", "exhausted", "rate limit"]


class GeminiCliService:
    """Runs one-shot prompts through the gemini CLI."""

    def __init__(self, model: Optional[str] = None, fallback_model: Optional[str] = None, working_dir: Optional[str] = None):
        self.model_name = model or config.MODEL_NAME
        self.fallback_model = fallback_model or config.FALLBACK_MODEL
        self.working_dir = working_dir or os.getcwd()
        self.gemini_cmd = shutil.which(config.GEMINI_CMD) or config.GEMINI_CMD

    def _build_args(self, model: str) -> List[str]:
        args = [self.gemini_cmd, "--output-format", "stream-json"]
        # The interviewer only needs text back, never tool calls
        args.extend(["--allowed-tools", "none"])
        if model:
            args.extend(["--model", model])
        return args

    async def generate_response_stream(self, user_id: str, prompt: str, model: Optional[str] = None) -> AsyncGenerator[Dict, None]:
        def log_debug(msg): global_log(f"[{user_id}] {msg}", level="DEBUG")

        current_model = model or self.model_name
        attempt = 0
        max_attempts = 2

        while attempt < max_attempts:
            attempt += 1
            args = self._build_args(current_model)
            log_debug(f"Attempt {attempt}: Running command {' '.join(args)}")

            should_fallback = False
            stderr_buffer = []
            proc = None
            try:
                proc = await asyncio.create_subprocess_exec(
                    *args,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=self.working_dir,
                )
            except OSError as e:
                raise AIServiceError(f"Could not start {self.gemini_cmd}: {e}") from e

            try:
                proc.stdin.write(prompt.encode("utf-8"))
                await proc.stdin.drain()
                proc.stdin.close()

                async def capture_stderr(pipe):
                    while True:
                        line = await pipe.readline()
                        if not line:
                            break
                        line_str = line.decode(errors="replace").strip()
                        log_debug(f"STDERR: {line_str}")
                        stderr_buffer.append(line_str)

                stderr_task = asyncio.create_task(capture_stderr(proc.stderr))

                while True:
                    line = await proc.stdout.readline()
                    if not line:
                        break
                    line_str = line.decode(errors="replace").strip()
                    if not line_str:
                        continue
                    try:
                        data = json.loads(line_str)
                    except json.JSONDecodeError:
                        yield {"type": "raw", "content": line_str}
                        continue

                    content_to_check = str(data).lower()
                    if data.get("type") == "error" and any(k in content_to_check for k in CAPACITY_KEYWORDS) and attempt < max_attempts and self.fallback_model:
                        log_debug(f"Capacity error detected in stdout, falling back to {self.fallback_model}")
                        yield {"type": "model_switch", "old_model": current_model, "new_model": self.fallback_model}
                        current_model = self.fallback_model
                        should_fallback = True
                        break
                    yield data

                if should_fallback:
                    stderr_task.cancel()
                    continue

                await proc.wait()
                await stderr_task
                log_debug(f"Process exited with code {proc.returncode}")

                if proc.returncode != 0:
                    err_text = "\n".join(stderr_buffer)
                    if any(k in err_text.lower() for k in CAPACITY_KEYWORDS) and attempt < max_attempts and self.fallback_model:
                        log_debug(f"Capacity error detected in stderr, falling back to {self.fallback_model}")
                        yield {"type": "model_switch", "old_model": current_model, "new_model": self.fallback_model}
                        current_model = self.fallback_model
                        continue
                    raise AIServiceError(f"{self.gemini_cmd} exited with code {proc.returncode}: {err_text[-500:]}")
                break
            finally:
                if proc.returncode is None:
                    try:
                        proc.terminate()
                        await proc.wait()
                    except ProcessLookupError:
                        pass

    async def generate_response(self, user_id: str, prompt: str, model: Optional[str] = None) -> str:
        full_response = ""
        async for chunk in self.generate_response_stream(user_id, prompt, model):
            if chunk.get("type") == "message" and chunk.get("role", "assistant") == "assistant":
                full_response += chunk.get("content", "")
            elif chunk.get("type") == "raw":
                full_response += chunk.get("content", "") + "\n"
            elif chunk.get("type") == "error":
                raise AIServiceError(f"Model error: {chunk.get('content') or chunk.get('message')}")
        return full_response.strip()
