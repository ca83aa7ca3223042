from datetime import datetime, timedelta, timezone

import pytest

from app.core.security import hash_token
from app.models import AuthSession, DeviceType
from app.services import exceptions
from app.services.session_service import DeviceInfo, SessionService, detect_device_type
from app.services.token_service import SessionClaims
from app.stores import SqlSessionStore


def build_service(components, db_session, *, clock=None, settings=None) -> SessionService:
    return SessionService(
        settings=settings or components.settings,
        session_store=SqlSessionStore(db_session),
        token_service=components.token_service,
        lock_factory=components.lock_factory,
        clock=clock,
    )


def ticking_clock(start: datetime, step: timedelta = timedelta(seconds=1)):
    current = [start]

    def _clock():
        value = current[0]
        current[0] = value + step
        return value

    return _clock


def active_ids(db_session, user_id: int) -> set[str]:
    db_session.expire_all()
    rows = db_session.query(AuthSession).filter(AuthSession.user_id == user_id, AuthSession.is_active.is_(True)).all()
    return {row.session_id for row in rows}


def test_create_session_returns_bound_tokens(session_service, make_user, components):
    user = make_user()

    created = session_service.create_session(
        user_id=user.id,
        role="customer",
        device=DeviceInfo(user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)", ip_address="10.0.0.1"),
    )

    assert created.session_id.startswith("sess_")
    assert created.access_expires_in == 900
    assert created.evicted_session_ids == []
    claims = components.token_service.decode(created.access_token)
    assert claims.session == SessionClaims(user_id=user.id, role="customer", session_id=created.session_id)

    row = session_service.get_session(created.session_id)
    assert row.device_type is DeviceType.MOBILE
    assert row.ip_address == "10.0.0.1"
    assert row.access_token_hash != created.access_token


def test_sixth_session_evicts_the_oldest(components, db_session, make_user):
    user = make_user()
    service = build_service(components, db_session, clock=ticking_clock(datetime.now(tz=timezone.utc)))

    created = [service.create_session(user_id=user.id, role="customer") for _ in range(6)]

    assert created[-1].evicted_session_ids == [created[0].session_id]
    assert active_ids(db_session, user.id) == {item.session_id for item in created[1:]}
    assert service.validate_access_token(created[0].access_token) is None
    assert service.validate_access_token(created[1].access_token) is not None


def test_session_cap_follows_settings(components, db_session, make_user):
    user = make_user()
    settings = components.settings.model_copy(update={"MAX_SESSIONS_PER_USER": 2})
    service = build_service(
        components, db_session, clock=ticking_clock(datetime.now(tz=timezone.utc)), settings=settings
    )

    created = [service.create_session(user_id=user.id, role="customer") for _ in range(4)]

    assert active_ids(db_session, user.id) == {created[2].session_id, created[3].session_id}
    limit = service.check_session_limit(user.id)
    assert (limit.has_reached_limit, limit.active_count, limit.max_sessions) == (True, 2, 2)


def test_validate_access_token_returns_session_info(session_service, make_user):
    user = make_user()
    created = session_service.create_session(user_id=user.id, role="customer")

    info = session_service.validate_access_token(created.access_token)

    assert info.session_id == created.session_id
    assert info.user_id == user.id
    assert info.role == "customer"
    assert 0 < info.expires_in <= 7 * 24 * 3600
    assert info.last_used_at is not None


def test_validate_rejects_unknown_and_refresh_tokens(session_service, make_user):
    user = make_user()
    created = session_service.create_session(user_id=user.id, role="customer")

    assert session_service.validate_access_token("garbage") is None
    assert session_service.validate_access_token(created.refresh_token) is None


def test_validate_deactivates_expired_session(components, db_session, make_user):
    user = make_user()
    created = build_service(components, db_session).create_session(user_id=user.id, role="customer")
    later = datetime.now(tz=timezone.utc) + timedelta(days=8)
    service = build_service(components, db_session, clock=lambda: later)

    assert service.validate_access_token(created.access_token) is None
    assert active_ids(db_session, user.id) == set()


def test_refresh_rotates_both_tokens(session_service, make_user):
    user = make_user()
    created = session_service.create_session(user_id=user.id, role="customer")

    refreshed = session_service.refresh_session(created.refresh_token)

    assert refreshed.session_id == created.session_id
    assert refreshed.access_token != created.access_token
    assert refreshed.refresh_token != created.refresh_token
    assert refreshed.expires_at == created.expires_at
    assert session_service.validate_access_token(created.access_token) is None
    assert session_service.validate_access_token(refreshed.access_token) is not None


def test_refresh_token_replay_is_rejected(session_service, make_user):
    user = make_user()
    created = session_service.create_session(user_id=user.id, role="customer")
    refreshed = session_service.refresh_session(created.refresh_token)

    with pytest.raises(exceptions.InvalidToken):
        session_service.refresh_session(created.refresh_token)

    # the legitimate holder of the rotated pair is unaffected
    assert session_service.refresh_session(refreshed.refresh_token).session_id == created.session_id


def test_refresh_rejects_access_token_and_logged_out_session(session_service, make_user):
    user = make_user()
    created = session_service.create_session(user_id=user.id, role="customer")

    with pytest.raises(exceptions.InvalidToken):
        session_service.refresh_session(created.access_token)

    session_service.logout(created.session_id)
    with pytest.raises(exceptions.InvalidToken):
        session_service.refresh_session(created.refresh_token)


def test_refresh_of_expired_session_raises_session_expired(components, db_session, make_user):
    user = make_user()
    created = build_service(components, db_session).create_session(user_id=user.id, role="customer")
    later = datetime.now(tz=timezone.utc) + timedelta(days=8)

    with pytest.raises(exceptions.SessionExpired):
        build_service(components, db_session, clock=lambda: later).refresh_session(created.refresh_token)


def test_logout_is_idempotent(session_service, make_user):
    user = make_user()
    created = session_service.create_session(user_id=user.id, role="customer")

    session_service.logout(created.session_id)
    session_service.logout(created.session_id)
    session_service.logout("sess_unknown")

    assert session_service.validate_access_token(created.access_token) is None


def test_logout_all_reports_count(session_service, make_user):
    user = make_user()
    other = make_user(phone="+2349012345678")
    for _ in range(3):
        session_service.create_session(user_id=user.id, role="customer")
    kept = session_service.create_session(user_id=other.id, role="customer")

    assert session_service.logout_all(user.id) == 3
    assert session_service.logout_all(user.id) == 0
    assert session_service.validate_access_token(kept.access_token) is not None


def test_invalidate_by_access_token(session_service, make_user):
    user = make_user()
    created = session_service.create_session(user_id=user.id, role="customer")

    assert session_service.invalidate_by_access_token(created.access_token) is True
    assert session_service.invalidate_by_access_token(created.access_token) is False
    assert session_service.invalidate_by_access_token("garbage") is False


def test_list_and_stats(session_service, make_user, components, db_session):
    user = make_user()
    desktop = DeviceInfo(user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64)")
    first = session_service.create_session(user_id=user.id, role="customer", device=desktop)
    session_service.create_session(user_id=user.id, role="customer", device=desktop)
    session_service.logout(first.session_id)
    lapsed_clock = datetime.now(tz=timezone.utc) - timedelta(days=8)
    build_service(components, db_session, clock=lambda: lapsed_clock).create_session(
        user_id=user.id, role="customer", device=DeviceInfo(user_agent="curl/8.4.0")
    )

    sessions = session_service.list_active_sessions(user.id)
    stats = session_service.session_stats(user.id)

    assert len(sessions) == 1
    assert sessions[0].device_type is DeviceType.DESKTOP
    assert stats.total_sessions == 3
    # the logged-out session is inactive but not expired
    assert stats.active_sessions == 1
    assert stats.expired_sessions == 1
    assert stats.device_types == {"desktop": 2, "unknown": 1}


def test_extend_session_never_shortens(session_service, make_user):
    user = make_user()
    created = session_service.create_session(user_id=user.id, role="customer")

    info = session_service.extend_session(created.session_id, minutes=15)

    assert info.expires_at == created.expires_at

    extended = session_service.extend_session(created.session_id, minutes=60 * 24 * 30)
    assert extended.expires_at > created.expires_at + timedelta(days=20)


def test_extend_session_errors(session_service, make_user):
    user = make_user()
    created = session_service.create_session(user_id=user.id, role="customer")

    with pytest.raises(exceptions.ValidationError):
        session_service.extend_session(created.session_id, minutes=0)
    with pytest.raises(exceptions.NotFoundError):
        session_service.extend_session("sess_missing")


def test_cleanup_expired_sessions(components, db_session, make_user):
    user = make_user()
    now = datetime.now(tz=timezone.utc)
    stale = build_service(components, db_session, clock=lambda: now - timedelta(days=40)).create_session(
        user_id=user.id, role="customer"
    )
    lapsed = build_service(components, db_session, clock=lambda: now - timedelta(days=8)).create_session(
        user_id=user.id, role="customer"
    )
    live = build_service(components, db_session).create_session(user_id=user.id, role="customer")
    service = build_service(components, db_session, clock=lambda: now)

    result = service.cleanup_expired_sessions()

    assert (result.deactivated, result.deleted) == (2, 1)
    assert service.get_session(stale.session_id) is None
    assert service.get_session(lapsed.session_id).is_active is False
    assert service.get_session(live.session_id).is_active is True

    again = service.cleanup_expired_sessions()
    assert (again.deactivated, again.deleted) == (0, 0)


@pytest.mark.parametrize(
    ("user_agent", "expected"),
    [
        (None, DeviceType.UNKNOWN),
        ("Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X)", DeviceType.TABLET),
        ("Mozilla/5.0 (Linux; Android 13; SM-X200)", DeviceType.TABLET),
        ("Mozilla/5.0 (Linux; Android 13; Pixel 7) Mobile Safari/537.36", DeviceType.MOBILE),
        ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0)", DeviceType.DESKTOP),
        ("curl/8.4.0", DeviceType.UNKNOWN),
    ],
)
def test_detect_device_type(user_agent, expected):
    assert detect_device_type(user_agent) is expected


def _bind_hash(db_session, session_id: str, **hashes) -> None:
    db_session.query(AuthSession).filter(AuthSession.session_id == session_id).update(
        hashes, synchronize_session=False
    )
    db_session.commit()


def test_access_token_for_another_session_is_rejected(session_service, make_user, components, db_session):
    user = make_user()
    created = session_service.create_session(user_id=user.id, role="customer")
    foreign = components.token_service.issue_access_token(
        SessionClaims(user_id=user.id, role="customer", session_id="sess_other")
    )
    _bind_hash(db_session, created.session_id, access_token_hash=hash_token(foreign))

    assert session_service.validate_access_token(foreign) is None


def test_refresh_token_for_another_session_is_rejected(session_service, make_user, components, db_session):
    user = make_user()
    created = session_service.create_session(user_id=user.id, role="customer")
    foreign = components.token_service.issue_refresh_token(
        SessionClaims(user_id=user.id, role="customer", session_id="sess_other")
    )
    _bind_hash(db_session, created.session_id, refresh_token_hash=hash_token(foreign))

    with pytest.raises(exceptions.InvalidToken):
        session_service.refresh_session(foreign)
    assert session_service.get_session(created.session_id).refresh_token_hash == hash_token(foreign)
