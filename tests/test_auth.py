import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from storefront_server.auth import AuthManager
from storefront_server.errors import AuthFailure
from storefront_server.identity import LocalIdentityProvider
from storefront_server.models import SessionData


class RejectingProvider(LocalIdentityProvider):
    async def sign_in_anonymous(self):
        raise AuthFailure("disabled")


class DeadRefreshProvider(LocalIdentityProvider):
    async def refresh(self, session):
        raise AuthFailure("Token refresh rejected")


class RefreshingProvider(LocalIdentityProvider):
    def __init__(self):
        self.refreshed = 0

    async def refresh(self, session):
        self.refreshed += 1
        return session.model_copy(
            update={
                "id_token": f"fresh-{self.refreshed}",
                "expires_at": datetime.now(timezone.utc) + timedelta(hours=1),
            }
        )


async def test_anonymous_sign_in_notifies_listeners():
    auth = AuthManager(LocalIdentityProvider())
    seen = []
    auth.on_auth_state_change(seen.append)

    session_id = await auth.sign_in()

    assert auth.is_authenticated()
    assert seen == [session_id]


async def test_token_sign_in_is_stable():
    first = await AuthManager(LocalIdentityProvider()).sign_in("pre-issued")
    second = await AuthManager(LocalIdentityProvider()).sign_in("pre-issued")

    assert first == second


async def test_session_is_persisted_and_reused(tmp_path):
    session_file = str(tmp_path / "session.json")
    first = await AuthManager(LocalIdentityProvider(), session_file).sign_in()

    assert oct(os.stat(session_file).st_mode & 0o777) == "0o600"
    second = await AuthManager(LocalIdentityProvider(), session_file).sign_in()
    assert first == second


async def test_corrupted_session_file_starts_fresh(tmp_path):
    session_file = tmp_path / "session.json"
    session_file.write_text("{broken")

    auth = AuthManager(LocalIdentityProvider(), str(session_file))

    assert not auth.is_authenticated()


async def test_session_from_other_provider_is_ignored(tmp_path):
    session_file = tmp_path / "session.json"
    session_file.write_text(json.dumps({"session_id": "abc", "provider": "firebase"}))

    auth = AuthManager(LocalIdentityProvider(), str(session_file))

    assert not auth.is_authenticated()


async def test_rejected_sign_in_raises_auth_failure():
    auth = AuthManager(RejectingProvider())

    with pytest.raises(AuthFailure):
        await auth.sign_in()
    assert not auth.is_authenticated()


async def test_expired_token_is_refreshed():
    provider = RefreshingProvider()
    auth = AuthManager(provider)
    auth.session = SessionData(
        session_id="u1",
        id_token="old",
        refresh_token="r",
        expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
        provider="local",
    )

    assert await auth.id_token() == "fresh-1"
    assert await auth.id_token() == "fresh-1"


async def test_sign_out_detaches_listeners_with_none(tmp_path):
    session_file = tmp_path / "session.json"
    auth = AuthManager(LocalIdentityProvider(), str(session_file))
    seen = []
    await auth.sign_in()
    remove = auth.on_auth_state_change(seen.append)

    auth.sign_out()
    remove()
    await auth.sign_in()

    assert seen == [None]
    assert session_file.exists()


async def test_unrenewable_stored_session_is_replaced(tmp_path):
    session_file = tmp_path / "session.json"
    expired = SessionData(
        session_id="old-user",
        id_token="old",
        refresh_token="revoked",
        expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
        provider="local",
    )
    session_file.write_text(expired.model_dump_json())

    session_id = await AuthManager(DeadRefreshProvider(), str(session_file)).sign_in()

    assert session_id != "old-user"
    assert json.loads(session_file.read_text())["session_id"] == session_id
    again = await AuthManager(DeadRefreshProvider(), str(session_file)).sign_in()
    assert again == session_id
