import os
import sys
from pathlib import Path

import pytest
import anyio
import httpx
from sqlalchemy import create_engine

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite:///" + str(BASE_DIR / "test.db"))
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("JWT_REFRESH_SECRET_KEY", "test-refresh-secret")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("SMS_DRY_RUN", "true")
os.environ.setdefault("EMAIL_DRY_RUN", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from app.core.config import get_settings
from app.models import Base, OTPCode, OTPPurpose, User
from app.services.bootstrap import build_components
from app.services.rate_limiter import InMemoryRateLimiter
from app.main import create_app

get_settings.cache_clear()

_db_path = BASE_DIR / "test.db"


@pytest.fixture(scope="session")
def settings():
    return get_settings()


@pytest.fixture(scope="session")
def engine(settings):
    engine = create_engine(settings.DATABASE_URL, connect_args={"check_same_thread": False, "timeout": 5})
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if _db_path.exists():
        _db_path.unlink()


@pytest.fixture(autouse=True)
def clean_tables(engine):
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def components(settings, engine):
    return build_components(settings, engine=engine, rate_limiter=InMemoryRateLimiter())


@pytest.fixture()
def session_factory(components):
    return components.session_factory


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def otp_service(components, db_session):
    return components.otp_service(db_session)


@pytest.fixture()
def session_service(components, db_session):
    return components.session_service(db_session)


@pytest.fixture()
def auth_service(components, db_session):
    return components.auth_service(db_session)


@pytest.fixture()
def make_user(db_session):
    def _make_user(phone: str | None = "+2348012345678", email: str | None = None, is_active: bool = True) -> User:
        user = User(phone=phone, email=email, first_name="Ada", last_name="Obi", is_active=is_active, is_verified=True)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def read_code(db_session):
    """Return the newest unused code stored for (contact, purpose)."""

    def _read_code(contact: str, purpose: OTPPurpose) -> OTPCode:
        db_session.expire_all()
        otp = (
            db_session.query(OTPCode)
            .filter(OTPCode.contact == contact, OTPCode.purpose == purpose, OTPCode.is_used.is_(False))
            .order_by(OTPCode.id.desc())
            .first()
        )
        assert otp is not None
        return otp

    return _read_code


@pytest.fixture()
def client(components):
    app = create_app(components=components)

    class _SyncASGIClient:
        def __init__(self, fastapi_app):
            self._client = httpx.AsyncClient(
                transport=httpx.ASGITransport(app=fastapi_app),
                base_url="http://testserver",
            )

        def request(self, method: str, url: str, **kwargs):
            async def _do_request():
                return await self._client.request(method, url, **kwargs)

            return anyio.run(_do_request)

        def get(self, url: str, **kwargs):
            return self.request("GET", url, **kwargs)

        def post(self, url: str, **kwargs):
            return self.request("POST", url, **kwargs)

        def delete(self, url: str, **kwargs):
            return self.request("DELETE", url, **kwargs)

        def close(self):
            async def _do_close():
                await self._client.aclose()

            anyio.run(_do_close)

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            self.close()

    with _SyncASGIClient(app) as test_client:
        yield test_client
