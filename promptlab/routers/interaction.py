import asyncio
import json
import time
import uuid
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from promptlab.core import config
from promptlab.core.errors import ConversationError
from promptlab.core.log import global_log
from promptlab.models.dto import AnswerRequest, GenPromptRequest, RetryRequest, SetUserProfileRequest
from promptlab.services.tree_serializer import serialize_tree

router = APIRouter()


async def get_user(request: Request):
    user = request.session.get("user_id")
    if not user:
        raise HTTPException(401, "Unauthorized")
    return user


def sse_format(event: str, data) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


@router.get("/sse")
async def connect_sse(request: Request):
    # The stream is what hands a new browser its identity
    user = request.session.get("user_id")
    if not user:
        user = str(uuid.uuid4())
        request.session["user_id"] = user

    notifier = request.app.state.notification_service
    registry = request.app.state.session_registry
    queue = notifier.register(user)
    session_list = registry.get_user_session_ids(user)

    async def event_stream():
        try:
            yield sse_format("connected", {"userId": user, "sessionList": session_list})
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=config.SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if message is None:
                    break
                yield sse_format(message["event"], message["data"])
        finally:
            notifier.unregister(user, queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/message")
async def send_message(request: Request, body: AnswerRequest, user=Depends(get_user)):
    conversation = request.app.state.conversation_service
    try:
        result = await conversation.submit_answer(user, body)
    except ConversationError as e:
        # The listener hears about the failure too
        request.app.state.notification_service.send_error_message(user, e.message)
        raise
    return {"success": True, **result.model_dump(by_alias=True)}


@router.post("/retry")
async def retry_question(request: Request, body: RetryRequest, user=Depends(get_user)):
    conversation = request.app.state.conversation_service
    start = time.time()
    try:
        result = await conversation.retry(user, body)
    except ConversationError as e:
        request.app.state.notification_service.send_error_message(user, e.message)
        raise
    process_time = int((time.time() - start) * 1000)
    global_log(f"Retry handled in {process_time}ms - user: {user}, session: {body.session_id}")
    return {
        "success": True,
        "data": {
            "nodeId": body.node_id,
            "sessionId": body.session_id,
            "whyretry": body.whyretry,
            "processTime": process_time,
            "currentNodeId": result.current_node_id,
            "fallback": result.fallback,
        },
    }


@router.post("/gen-prompt")
async def gen_prompt(request: Request, body: GenPromptRequest, user=Depends(get_user)):
    conversation = request.app.state.conversation_service
    prompt, success = await conversation.generate_prompt(user, body.session_id)
    return {"success": success, "prompt": prompt}


@router.post("/profile")
async def set_profile(request: Request, body: SetUserProfileRequest, user=Depends(get_user)):
    conversation = request.app.state.conversation_service
    await conversation.set_user_profile(user, body.session_id, body.user_profile, body.user_target)
    return {"success": True}


@router.get("/sessions")
async def list_sessions(request: Request, user=Depends(get_user)):
    registry = request.app.state.session_registry
    return {"success": True, "sessions": [s.summary() for s in registry.get_user_sessions(user)]}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, request: Request, user=Depends(get_user)):
    registry = request.app.state.session_registry
    session = registry.get_session(user, session_id)
    return {"success": True, "session": {**session.summary(), "tree": serialize_tree(session.tree)}}


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, request: Request, user=Depends(get_user)):
    registry = request.app.state.session_registry
    # Owner check first, removing someone else's session is a 403
    registry.get_session(user, session_id)
    return {"success": registry.remove_session(session_id)}


@router.get("/sse-status")
async def sse_status(request: Request, user=Depends(get_user)):
    return {
        "success": True,
        "sse": request.app.state.notification_service.get_status(),
        "sessions": request.app.state.session_registry.get_session_stats(),
    }
