from __future__ import annotations

import logging

from fastapi import APIRouter
from opentelemetry import trace

from services.backend.app.api.deps import UserRepositoryDep
from services.backend.app.core.exceptions import ErrorResponse, UserNotFoundError
from services.backend.app.models.user import User, UserListResponse

router = APIRouter(prefix="/api/users")
logger = logging.getLogger(__name__)


@router.get("", response_model=UserListResponse, summary="List users")
def get_users_handler(users: UserRepositoryDep) -> UserListResponse:
    found = users.list_users()
    trace.get_current_span().set_attribute("user_count", len(found))
    return UserListResponse(users=found, count=len(found))


@router.get(
    "/{id}",
    response_model=User,
    responses={404: {"model": ErrorResponse}},
    summary="Get one user",
)
def get_user_handler(id: str, users: UserRepositoryDep) -> User:  # noqa: A002
    trace.get_current_span().set_attribute("user_id", id)
    user = users.get_user(id)
    if user is None:
        logger.info("User not found", extra={"user_id": id})
        raise UserNotFoundError(id)
    return user
