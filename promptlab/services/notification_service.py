import asyncio
import time
from typing import Any, Dict, Optional
from promptlab.core import config
from promptlab.core.log import global_log


class NotificationService:
    """
    Push channel to connected clients, one listener queue per user.

    A new connection replaces the previous one. Sending never raises: a user
    with no listener simply misses the event, the tree state is already saved.
    """

    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or config.SSE_QUEUE_SIZE
        self.listeners: Dict[str, asyncio.Queue] = {}

    def register(self, user_id: str) -> asyncio.Queue:
        old = self.listeners.get(user_id)
        if old is not None:
            self._close_queue(old)
        queue = asyncio.Queue(maxsize=self.queue_size)
        self.listeners[user_id] = queue
        global_log(f"Listener registered - user: {user_id}")
        return queue

    def unregister(self, user_id: str, queue: Optional[asyncio.Queue] = None):
        current = self.listeners.get(user_id)
        if current is None:
            return
        # A stale stream closing must not drop the connection that replaced it
        if queue is not None and current is not queue:
            return
        del self.listeners[user_id]
        global_log(f"Listener removed - user: {user_id}")

    def is_connected(self, user_id: str) -> bool:
        return user_id in self.listeners

    def _close_queue(self, queue: asyncio.Queue):
        # The end-of-stream marker must get through, a full backlog is dropped for it
        while not self._put(queue, None):
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass

    @staticmethod
    def _put(queue: asyncio.Queue, message) -> bool:
        try:
            queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            return False

    def notify(self, user_id: str, event: str, data: Any) -> bool:
        queue = self.listeners.get(user_id)
        if queue is None:
            global_log(f"No listener - user: {user_id}, event: {event}", level="WARNING")
            return False
        if not self._put(queue, {"event": event, "data": data}):
            global_log(f"Listener queue full, dropping event - user: {user_id}, event: {event}", level="WARNING")
            return False
        global_log(f"Event sent - user: {user_id}, event: {event}", level="DEBUG")
        return True

    def send_message(self, user_id: str, msg: Any, code: str = "200", success: bool = True) -> bool:
        payload = {
            "success": success,
            "code": code,
            "data": msg,
            "timestamp": int(time.time() * 1000),
        }
        return self.notify(user_id, "success" if success else "error", payload)

    def send_error_message(self, user_id: str, msg: Any) -> bool:
        return self.send_message(user_id, msg, code="500", success=False)

    def get_status(self) -> Dict[str, Any]:
        return {
            "connectedUsers": list(self.listeners.keys()),
            "totalConnections": len(self.listeners),
            "timestamp": int(time.time() * 1000),
        }

    def close(self):
        for queue in self.listeners.values():
            self._close_queue(queue)
        self.listeners.clear()
