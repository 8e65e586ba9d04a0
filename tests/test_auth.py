"""
Unit tests for UserRepository and the local identity provider
"""
import pytest
from crud.user import UserRepository
from auth_utils import hash_password, verify_password, decode_jwt
from services.errors import InvalidCredentials, SignupRejected
from services.identity_provider import AuthEvent
from tests.conftest import STRONG_PASSWORD


@pytest.mark.asyncio
async def test_create_and_get_user(test_db):
    """
    Test creating a new user and retrieving it by email.
    """
    user_repo = UserRepository(test_db)

    test_email = "Test@Example.com"
    hashed_pwd = hash_password(STRONG_PASSWORD)

    created_user = await user_repo.create_user({
        "email": test_email,
        "hashed_password": hashed_pwd,
        "user_metadata": {"display_name": "Tess"},
    })

    # Verify user was created with correct attributes
    assert created_user.id
    assert created_user.email == test_email.lower()  # Email should be lowercased
    assert created_user.user_metadata == {"display_name": "Tess"}

    await test_db.commit()

    retrieved_user = await user_repo.get_user_by_email(test_email)
    assert retrieved_user is not None
    assert retrieved_user.id == created_user.id
    assert verify_password(STRONG_PASSWORD, retrieved_user.hashed_password) is True
    assert verify_password("wrong_password", retrieved_user.hashed_password) is False


@pytest.mark.asyncio
async def test_sign_up_stores_display_name_without_session(provider):
    identity = await provider.sign_up("ann@example.com", STRONG_PASSWORD, {"display_name": "Ann"})

    assert identity.email == "ann@example.com"
    assert identity.display_name == "Ann"
    assert await provider.get_session() is None


@pytest.mark.asyncio
async def test_sign_up_rejects_duplicate_email(provider):
    await provider.sign_up("dup@example.com", STRONG_PASSWORD)

    with pytest.raises(SignupRejected, match="already registered"):
        await provider.sign_up("DUP@example.com", STRONG_PASSWORD)


@pytest.mark.asyncio
async def test_sign_up_rejects_weak_password_and_bad_email(provider):
    with pytest.raises(SignupRejected, match="12 characters"):
        await provider.sign_up("short@example.com", "Short1!")

    with pytest.raises(SignupRejected, match="Invalid email"):
        await provider.sign_up("not-an-email", STRONG_PASSWORD)


@pytest.mark.asyncio
async def test_sign_in_issues_token_and_emits_event(provider):
    identity = await provider.sign_up("bob@example.com", STRONG_PASSWORD)
    events = []
    handle = provider.on_auth_state_change(lambda event, session: events.append(event))

    session = await provider.sign_in("bob@example.com", STRONG_PASSWORD)

    assert session.user.id == identity.id
    assert decode_jwt(session.access_token)["sub"] == identity.id
    assert session.expires_at is not None
    assert events == [AuthEvent.SIGNED_IN]
    assert await provider.get_session() == session
    handle.unsubscribe()


@pytest.mark.asyncio
async def test_sign_in_wrong_password(provider):
    await provider.sign_up("carol@example.com", STRONG_PASSWORD)

    with pytest.raises(InvalidCredentials, match="Invalid login credentials"):
        await provider.sign_in("carol@example.com", "WrongPass123!")

    with pytest.raises(InvalidCredentials):
        await provider.sign_in("nobody@example.com", STRONG_PASSWORD)

    assert await provider.get_session() is None


@pytest.mark.asyncio
async def test_refresh_emits_token_refreshed(provider):
    await provider.sign_up("dan@example.com", STRONG_PASSWORD)
    await provider.sign_in("dan@example.com", STRONG_PASSWORD)
    events = []
    provider.on_auth_state_change(lambda event, session: events.append(event))

    refreshed = await provider.refresh_session()

    assert refreshed is not None
    assert events == [AuthEvent.TOKEN_REFRESHED]


@pytest.mark.asyncio
async def test_sign_out_without_session_is_noop(provider):
    events = []
    provider.on_auth_state_change(lambda event, session: events.append(event))

    await provider.sign_out()
    await provider.sign_out()

    assert events == []
    assert await provider.get_session() is None
