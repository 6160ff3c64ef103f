from __future__ import annotations

import itertools
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from zonecrm import models  # noqa: F401
from zonecrm.authz.seed import seed_roles_and_capabilities
from zonecrm.container import Services, build_services, get_services
from zonecrm.core.config import get_settings
from zonecrm.core.database import Base
from zonecrm.main import app
from zonecrm.zones.models import User, Zone, ZoneLevel, ZoneMembership


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("CAPABILITY_REGISTRY_CHECK", "false")
    monkeypatch.setenv("AUDIT_ACTIVITY_DISPATCH", "inline")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        seed_roles_and_capabilities(session)
    try:
        yield SessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def services(session_factory: sessionmaker[Session]) -> Services:
    return build_services(session_factory, get_settings())


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    counter = itertools.count(1)

    def _make(username: str | None = None, *, is_active: bool = True) -> User:
        index = next(counter)
        name = username or f"user{index}"
        user = User(
            username=name,
            email=f"{name}@example.com",
            first_name=name.title(),
            last_name="Tester",
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture()
def make_zone(db_session: Session) -> Callable[..., Zone]:
    counter = itertools.count(1)

    def _make(
        code: str | None = None,
        *,
        parent: Zone | None = None,
        level: ZoneLevel | None = None,
    ) -> Zone:
        index = next(counter)
        zone = Zone(
            code=code or f"Z{index:03d}",
            name=f"Zone {code or index}",
            parent_id=parent.id if parent is not None else None,
            level=(level or (ZoneLevel.ROOT if parent is None else ZoneLevel.BRANCH)).value,
        )
        db_session.add(zone)
        db_session.commit()
        return zone

    return _make


@pytest.fixture()
def add_member(db_session: Session) -> Callable[..., ZoneMembership]:
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    counter = itertools.count(1)

    def _add(user: User, zone: Zone, role: str, *, is_primary: bool | None = None) -> ZoneMembership:
        if is_primary is None:
            existing = db_session.scalar(select(ZoneMembership.id).where(ZoneMembership.user_id == user.id))
            is_primary = existing is None
        membership = ZoneMembership(
            user_id=user.id,
            zone_id=zone.id,
            role=role,
            is_primary=is_primary,
            assigned_at=base + timedelta(minutes=next(counter)),
        )
        db_session.add(membership)
        db_session.commit()
        return membership

    return _add


@pytest.fixture()
def auth_headers() -> Callable[[int], dict[str, str]]:
    def _headers(user_id: int) -> dict[str, str]:
        settings = get_settings()
        token = jwt.encode({"sub": str(user_id)}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def client(services: Services) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
