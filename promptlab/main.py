import sys
import asyncio
from fastapi import FastAPI, Request

# Set Windows Event Loop Policy for subprocess support
if sys.platform == 'win32':
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware
from promptlab.core import config
from promptlab.core.errors import ConversationError
from promptlab.core.log import global_log
from promptlab.services.session_registry import SessionRegistry
from promptlab.services.notification_service import NotificationService
from promptlab.services.llm_service import GeminiCliService
from promptlab.services.question_generator import QuestionGenerator, PromptSynthesizer
from promptlab.services.conversation_service import ConversationService
from promptlab.routers import interaction

from contextlib import asynccontextmanager

@asynccontextmanager
async def lifespan(app: FastAPI):
    if sys.platform == 'win32':
        loop = asyncio.get_running_loop()
        from asyncio import ProactorEventLoop
        if not isinstance(loop, ProactorEventLoop):
            global_log(f"Running on {type(loop).__name__}, but ProactorEventLoop is required for subprocesses.", level="WARNING")
    yield
    app.state.notification_service.close()
    app.state.session_registry.close()

app = FastAPI(lifespan=lifespan)

# Session Middleware
# We enable https_only if the origin starts with https
https_only = config.ORIGIN.startswith("https")
app.add_middleware(
    SessionMiddleware,
    secret_key=config.SESSION_SECRET,
    session_cookie="promptlab_session",
    same_site="lax",
    https_only=https_only
)

@app.exception_handler(ConversationError)
async def conversation_error_handler(request: Request, exc: ConversationError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "code": exc.code, "error": exc.message},
    )

# Services
session_registry = SessionRegistry()
notification_service = NotificationService()
llm_service = GeminiCliService()
conversation_service = ConversationService(
    session_registry,
    notification_service,
    QuestionGenerator(llm_service),
    PromptSynthesizer(llm_service),
)

# App State
app.state.session_registry = session_registry
app.state.notification_service = notification_service
app.state.llm_service = llm_service
app.state.conversation_service = conversation_service

# Include Routers
app.include_router(interaction.router, prefix="/api/user-interaction")

if __name__ == "__main__":
    import uvicorn
    import argparse

    parser = argparse.ArgumentParser(description="Run the Prompt Lab interview service")
    parser.add_argument("--port", type=int, default=8000, help="Port to run the service on")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Host to bind to")
    args = parser.parse_args()

    uvicorn.run(app, host=args.host, port=args.port)
