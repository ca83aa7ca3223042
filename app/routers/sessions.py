from fastapi import APIRouter, Depends, status

from app.core.dependencies import get_current_identity, get_session_service
from app.schemas import SessionLimitRead, SessionRead, SessionStatsRead
from app.services import exceptions
from app.services.auth_service import AuthenticatedIdentity
from app.services.session_service import SessionService

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("", response_model=list[SessionRead])
def list_sessions(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    service: SessionService = Depends(get_session_service),
) -> list[SessionRead]:
    current_id = identity.session.session_id
    return [
        SessionRead(
            session_id=info.session_id,
            device_type=info.device_type,
            user_agent=info.user_agent,
            ip_address=info.ip_address,
            created_at=info.created_at,
            last_used_at=info.last_used_at,
            expires_at=info.expires_at,
            expires_in=info.expires_in,
            current=info.session_id == current_id,
        )
        for info in service.list_active_sessions(identity.user.id)
    ]


@router.get("/limit", response_model=SessionLimitRead)
def session_limit(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    service: SessionService = Depends(get_session_service),
) -> SessionLimitRead:
    limit = service.check_session_limit(identity.user.id)
    return SessionLimitRead(
        has_reached_limit=limit.has_reached_limit,
        active_count=limit.active_count,
        max_sessions=limit.max_sessions,
    )


@router.get("/stats", response_model=SessionStatsRead)
def session_stats(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    service: SessionService = Depends(get_session_service),
) -> SessionStatsRead:
    stats = service.session_stats(identity.user.id)
    return SessionStatsRead(
        total_sessions=stats.total_sessions,
        active_sessions=stats.active_sessions,
        expired_sessions=stats.expired_sessions,
        device_types=stats.device_types,
    )


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_session(
    session_id: str,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    service: SessionService = Depends(get_session_service),
) -> None:
    session = service.get_session(session_id)
    # Other users' sessions are reported as missing.
    if session is None or session.user_id != identity.user.id:
        raise exceptions.NotFoundError("Session not found")
    service.logout(session_id)
