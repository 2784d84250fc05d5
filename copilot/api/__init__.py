from copilot.api.user import router as user_router
from copilot.api.chat import router as chat_router
from copilot.api.deps import get_current_user

__all__ = [
    "user_router",
    "chat_router",
    "get_current_user",
]
