from typing import Generator

from fastapi import BackgroundTasks, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.db import iter_db_session
from app.services import exceptions
from app.services.auth_service import AuthenticatedIdentity, AuthService
from app.services.bootstrap import AuthComponents
from app.services.session_service import DeviceInfo, SessionService


bearer_scheme = HTTPBearer(auto_error=False)


def get_components(request: Request) -> AuthComponents:
    return request.app.state.components


def get_db(components: AuthComponents = Depends(get_components)) -> Generator[Session, None, None]:
    yield from iter_db_session(components.session_factory)


def get_auth_service(
    background_tasks: BackgroundTasks,
    components: AuthComponents = Depends(get_components),
    db: Session = Depends(get_db),
) -> AuthService:
    return components.auth_service(db, schedule_delivery=background_tasks.add_task)


def get_session_service(
    components: AuthComponents = Depends(get_components),
    db: Session = Depends(get_db),
) -> SessionService:
    return components.session_service(db)


def get_device_info(request: Request) -> DeviceInfo:
    return DeviceInfo(
        user_agent=getattr(request.state, "user_agent", None),
        ip_address=getattr(request.state, "ip", None),
    )


def _get_token(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> str:
    if credentials is None:
        raise exceptions.AuthenticationError("Not authenticated")
    if credentials.scheme.lower() != "bearer":
        raise exceptions.AuthenticationError("Invalid authentication scheme")
    return credentials.credentials


def get_current_identity(
    token: str = Depends(_get_token),
    service: AuthService = Depends(get_auth_service),
) -> AuthenticatedIdentity:
    return service.validate_token(token)
