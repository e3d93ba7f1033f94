"""Shared test fixtures for passkey bridge backend tests."""

import json
import os
import uuid

# Ceremony endpoints are rate limited; tests hammer them from one address.
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from webauthn.helpers import bytes_to_base64url  # noqa: E402

from passkey_bridge.core.errors import VerificationFailed  # noqa: E402
from passkey_bridge.db.models import Base, User  # noqa: E402
from passkey_bridge.services.challenge_service import ChallengeStore  # noqa: E402
from passkey_bridge.services.session_issuer import JWTSessionIssuer  # noqa: E402
from passkey_bridge.services.webauthn_verifier import (  # noqa: E402
    VerifiedAuthentication,
    VerifiedRegistration,
)

# Use an in-memory SQLite database for tests.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DATABASE_URL, echo=False)
TestSessionFactory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@event.listens_for(engine.sync_engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest_asyncio.fixture
async def db() -> AsyncSession:
    """Create tables and yield a fresh async session for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionFactory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def test_user(db: AsyncSession) -> User:
    """Create and return a test user."""
    user = User(
        id=str(uuid.uuid4()),
        email="test@example.com",
        name="Test User",
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def other_user(db: AsyncSession) -> User:
    user = User(
        id=str(uuid.uuid4()),
        email="other@example.com",
        name="Other User",
    )
    db.add(user)
    await db.commit()
    return user


def build_assertion(challenge: str, credential_id: str = "cred-abc") -> dict:
    """A WebAuthn assertion whose clientDataJSON echoes ``challenge``."""
    client_data = {
        "type": "webauthn.get",
        "challenge": challenge,
        "origin": "https://localhost:3000",
        "crossOrigin": False,
    }
    return {
        "id": credential_id,
        "rawId": credential_id,
        "type": "public-key",
        "response": {
            "clientDataJSON": bytes_to_base64url(json.dumps(client_data).encode()),
            "authenticatorData": "SZYN",
            "signature": "MEUC",
        },
    }


@pytest.fixture
def make_assertion():
    return build_assertion


class StubVerifier:
    """Stands in for py_webauthn: accepts whatever it is told to accept.

    ``credential_id`` and ``sign_count`` shape the registration result,
    ``new_sign_count`` the authentication result. Setting ``error`` makes
    both verifications raise it.
    """

    def __init__(self):
        self.credential_id = "cred-abc"
        self.public_key = b"\x01\x02\x03public-key"
        self.sign_count = 0
        self.new_sign_count = 1
        self.error: Exception | None = None
        self.calls: list[tuple[str, dict]] = []

    async def verify_registration(self, **kwargs) -> VerifiedRegistration:
        self.calls.append(("registration", kwargs))
        if self.error is not None:
            raise self.error
        return VerifiedRegistration(
            credential_id=self.credential_id,
            public_key=self.public_key,
            sign_count=self.sign_count,
            aaguid="00000000-0000-0000-0000-000000000000",
            device_type="multi_device",
            backed_up=True,
        )

    async def verify_authentication(self, **kwargs) -> VerifiedAuthentication:
        self.calls.append(("authentication", kwargs))
        if self.error is not None:
            raise self.error
        return VerifiedAuthentication(
            credential_id=kwargs["response"]["id"],
            new_sign_count=self.new_sign_count,
            user_verified=True,
        )

    def reject(self) -> None:
        self.error = VerificationFailed()


@pytest.fixture
def verifier() -> StubVerifier:
    return StubVerifier()


@pytest.fixture
def challenge_store() -> ChallengeStore:
    return ChallengeStore()


@pytest.fixture
def session_issuer() -> JWTSessionIssuer:
    return JWTSessionIssuer(lifetime_minutes=15)
