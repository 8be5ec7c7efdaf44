import os

os.environ.setdefault("SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SESSION_SWEEP_INTERVAL_SECONDS", "0")
os.environ.setdefault("PUBLIC_BASE_URL", "https://authspace.local")

from collections.abc import Generator, Sequence  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import StaticPool, create_engine, event  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from authspace.api import invitations as invitations_api  # noqa: E402
from authspace.api import password_reset as password_reset_api  # noqa: E402
from authspace.api import spaces as spaces_api  # noqa: E402
from authspace.core.database import Base, get_db  # noqa: E402
from authspace.core.security import TokenSigner  # noqa: E402
from authspace.main import app  # noqa: E402
from authspace.models.spaces import Space  # noqa: E402
from authspace.models.users import User  # noqa: E402
from authspace.services import space_service, user_service  # noqa: E402
from authspace.services.user_service import SlugGrant  # noqa: E402

PASSWORD = "correct horse battery staple"


def enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite manages transactions itself unless told not to; SAVEPOINT needs it off.
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Generator[Session]:
    connection = engine.connect()
    trans = connection.begin()

    # Service-level commits and rollbacks stay inside the test's transaction.
    TestingSessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        trans.rollback()
        connection.close()


@pytest.fixture
def client(db_session) -> Generator[TestClient]:
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def signer() -> TokenSigner:
    return TokenSigner("test-secret")


@pytest.fixture
def password() -> str:
    return PASSWORD


@pytest.fixture
def make_space(db_session):
    def _make(
        slug: str,
        *,
        public: bool = False,
        invitation_required: bool = True,
        parent: Space | None = None,
    ) -> Space:
        outcome = space_service.create_space(
            db_session,
            slug=slug,
            title=slug.replace("-", " ").title(),
            parent_space_id=parent.id if parent else None,
            is_publicly_browsable=public,
            invitation_required=invitation_required,
        )
        assert outcome.ok, outcome.detail
        return outcome.value

    return _make


@pytest.fixture
def make_user(db_session):
    def _make(
        username: str,
        *,
        password: str = PASSWORD,
        is_superuser: bool = False,
        grants: Sequence[SlugGrant] = (),
    ) -> User:
        outcome = user_service.create_user(
            db_session,
            username=username,
            email=f"{username}@example.com",
            password=password,
            first_name=username.title(),
            is_superuser=is_superuser,
            space_grants=grants,
        )
        assert outcome.ok, outcome.detail
        return db_session.get(User, outcome.value)

    return _make


@pytest.fixture
def login(client):
    def _login(username: str, password: str = PASSWORD):
        response = client.post("/login", json={"username": username, "password": password})
        assert response.status_code == 200, response.text
        return response

    return _login


@pytest.fixture(autouse=True)
def outbox(monkeypatch) -> list[tuple[str, str, str | None]]:
    """Capture outgoing mail as (kind, to_email, link) instead of talking SMTP."""
    sent: list[tuple[str, str, str | None]] = []

    def _recorder(kind):
        def _send(to_email: str, link: str | None = None) -> str:
            sent.append((kind, to_email, link))
            return f"<{len(sent)}@test>"

        return _send

    monkeypatch.setattr(invitations_api, "send_invitation", _recorder("invitation"))
    monkeypatch.setattr(spaces_api, "send_invitation", _recorder("invitation"))
    monkeypatch.setattr(password_reset_api, "send_password_reset", _recorder("reset"))
    monkeypatch.setattr(password_reset_api, "send_password_changed", _recorder("changed"))
    return sent
