"""
Dependency injection utilities for FastAPI.
"""
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt
from pydantic import BaseModel

from copilot.agent.conversations import ConversationStore
from copilot.agent.engine import TaskEngine
from copilot.agent.orchestrator import Orchestrator, get_orchestrator
from copilot.core.config import settings
from copilot.core.logging import logger
from copilot.db.repository import InstructionRepository
from copilot.db.supabase import get_supabase_client

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


class User(BaseModel):
    """User model."""
    id: str
    email: str


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_from(user_data) -> User:
    if isinstance(user_data, dict) or hasattr(user_data, "get"):
        return User(id=user_data.get("id"), email=user_data.get("email", "") or "")
    # Some object with id and email attributes
    return User(id=str(getattr(user_data, "id", "")), email=getattr(user_data, "email", "") or "")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> User:
    """
    Get current user from the bearer token.

    Args:
        credentials: Bearer credentials from the Authorization header

    Returns:
        User: Current user

    Raises:
        HTTPException: If the token is missing or invalid
    """
    if credentials is None:
        raise _unauthorized()
    token = credentials.credentials

    try:
        try:
            user_response = get_supabase_client().auth.get_user(token)
            return _user_from(user_response.user)
        except Exception as e:
            # If Supabase client fails, fallback to manual JWT verification
            logger.warning(f"Supabase auth failed, falling back to JWT verification: {e}")
            if not settings.SUPABASE_JWT_SECRET:
                logger.error("SUPABASE_JWT_SECRET is not set; cannot verify bearer tokens")
                raise _unauthorized()
            payload = jwt.decode(
                token,
                settings.SUPABASE_JWT_SECRET,
                algorithms=["HS256"],
                options={"verify_aud": False},
            )
            return User(id=payload["sub"], email=payload.get("email", ""))
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Authentication error: {e}")
        raise _unauthorized()


def get_engine(orchestrator: Orchestrator = Depends(get_orchestrator)) -> TaskEngine:
    return orchestrator.engine


def get_conversation_store(orchestrator: Orchestrator = Depends(get_orchestrator)) -> ConversationStore:
    return orchestrator.conversations


def get_instruction_repository(orchestrator: Orchestrator = Depends(get_orchestrator)) -> InstructionRepository:
    return orchestrator.context_builder.instructions
