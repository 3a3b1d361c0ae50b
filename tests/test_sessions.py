"""Tests for composite session credentials."""

from datetime import timedelta

import pytest

from viureview.service.errors import (
    InvalidToken,
    MalformedToken,
    NotFoundError,
    SessionExpired,
    SessionInactive,
    SessionNotFound,
)
from viureview.service.sessions import parse_active_filter, split_token
from viureview.storage.models import Session


@pytest.fixture
def adapter(runtime):
    return runtime.sessions


@pytest.fixture
def owner(make_user):
    return make_user("owner@example.com")


class TestSplitToken:
    @pytest.mark.parametrize("token", ["", "no-separator", "a:b:c", ":secret", "session:"])
    def test_malformed_tokens_rejected(self, token):
        with pytest.raises(MalformedToken):
            split_token(token)

    def test_well_formed_token_splits(self):
        assert split_token("abc:def") == ("abc", "def")


class TestIssue:
    async def test_token_is_session_id_and_secret(self, adapter, owner, store):
        issued = await adapter.issue(owner.id)
        session_id, secret = issued.token.split(":")

        assert session_id == issued.session_id
        assert secret == issued.raw_secret
        stored = store.get_session(session_id)
        assert stored.user_id == owner.id
        assert stored.is_active

    async def test_raw_secret_is_never_stored(self, adapter, owner, store):
        issued = await adapter.issue(owner.id)
        stored = store.get_session(issued.session_id)

        assert stored.token_hash != issued.raw_secret
        assert issued.raw_secret not in stored.token_hash

    async def test_custom_ttl_sets_expiry(self, adapter, owner, store):
        issued = await adapter.issue(owner.id, ttl_seconds=120)
        stored = store.get_session(issued.session_id)

        assert 119 <= (stored.expires_at - stored.created_at).total_seconds() <= 121


class TestResolve:
    async def test_valid_token_resolves_owner(self, adapter, owner):
        issued = await adapter.issue(owner.id)

        user = await adapter.resolve(issued.token)

        assert user.id == owner.id

    async def test_unknown_session_id(self, adapter, owner):
        issued = await adapter.issue(owner.id)

        with pytest.raises(SessionNotFound):
            await adapter.resolve(f"00000000-0000-0000-0000-000000000000:{issued.raw_secret}")

    async def test_revoked_session(self, adapter, owner):
        issued = await adapter.issue(owner.id)
        adapter.revoke(issued.session_id)

        with pytest.raises(SessionInactive):
            await adapter.resolve(issued.token)

    async def test_expired_session(self, adapter, owner):
        issued = await adapter.issue(owner.id, ttl_seconds=-1)

        with pytest.raises(SessionExpired):
            await adapter.resolve(issued.token)

    async def test_wrong_secret(self, adapter, owner):
        issued = await adapter.issue(owner.id)

        with pytest.raises(InvalidToken):
            await adapter.resolve(f"{issued.session_id}:not-the-secret")

    async def test_malformed_token(self, adapter):
        with pytest.raises(MalformedToken):
            await adapter.resolve("just-one-part")


class TestRevokeAndList:
    def test_revoke_unknown_session(self, adapter):
        with pytest.raises(SessionNotFound):
            adapter.revoke("00000000-0000-0000-0000-000000000000")

    async def test_list_filters_by_active(self, adapter, owner):
        first = await adapter.issue(owner.id)
        second = await adapter.issue(owner.id)
        adapter.revoke(first.session_id)

        active = adapter.list_for_owner(owner.id, "true")
        inactive = adapter.list_for_owner(owner.id, False)
        everything = adapter.list_for_owner(owner.id)

        assert [s.id for s in active] == [second.session_id]
        assert [s.id for s in inactive] == [first.session_id]
        assert {s.id for s in everything} == {first.session_id, second.session_id}

    async def test_revoke_owned_hides_foreign_sessions(self, adapter, owner, make_user):
        other = make_user("other@example.com")
        foreign = await adapter.issue(other.id)

        with pytest.raises(NotFoundError):
            adapter.revoke_owned(owner.id, foreign.session_id)
        assert (await adapter.resolve(foreign.token)).id == other.id

    async def test_revoke_owned_deactivates(self, adapter, owner):
        issued = await adapter.issue(owner.id)

        revoked = adapter.revoke_owned(owner.id, issued.session_id)

        assert revoked.is_active is False
        with pytest.raises(SessionInactive):
            await adapter.resolve(issued.token)


@pytest.mark.parametrize(
    "raw,expected",
    [(None, None), (True, True), (False, False), ("true", True), ("FALSE", False)],
)
def test_parse_active_filter(raw, expected):
    assert parse_active_filter(raw) is expected


def test_session_valid_until_expiry_instant():
    sess = Session.new("user-1", "hash", ttl_seconds=60)

    assert sess.is_expired(sess.expires_at - timedelta(seconds=1)) is False
    assert sess.is_expired(sess.expires_at) is False
    assert sess.is_expired(sess.expires_at + timedelta(microseconds=1)) is True
