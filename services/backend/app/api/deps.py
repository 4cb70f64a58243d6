"""Request-scoped access to the objects wired into ``app.state`` by ``create_app``."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from services.backend.app.core.config import Settings
from services.backend.app.core.simulator import WorkSimulator
from services.backend.app.core.users import UserRepository


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_simulator(request: Request) -> WorkSimulator:
    return request.app.state.simulator


def get_user_repository(request: Request) -> UserRepository:
    return request.app.state.users


SettingsDep = Annotated[Settings, Depends(get_settings)]
SimulatorDep = Annotated[WorkSimulator, Depends(get_simulator)]
UserRepositoryDep = Annotated[UserRepository, Depends(get_user_repository)]
