"""
API endpoint routers.
"""
from fastapi import APIRouter

from copilot.api.endpoints.chat import router as chat_router
from copilot.api.endpoints.conversations import router as conversations_router
from copilot.api.endpoints.instructions import router as instructions_router
from copilot.api.endpoints.tasks import router as tasks_router
from copilot.api.endpoints.tools import router as tools_router
from copilot.api.endpoints.webhooks import router as webhooks_router

# Create main API router
router = APIRouter()

# Include sub-routers
router.include_router(chat_router, prefix="/chat", tags=["Chat"])
router.include_router(conversations_router, prefix="/conversations", tags=["Conversations"])
router.include_router(tasks_router, prefix="/tasks", tags=["Tasks"])
router.include_router(instructions_router, prefix="/instructions", tags=["Instructions"])
router.include_router(tools_router, prefix="/tools", tags=["Tools"])
router.include_router(webhooks_router, prefix="/webhooks", tags=["Webhooks"])
