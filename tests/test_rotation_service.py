"""
Tests for RotationService - token families, rotation, and reuse detection.
"""
import asyncio
import logging
from datetime import timedelta

import pytest

from session_guard.models.base import TokenStatus, UserRole
from session_guard.models.refresh_token import RefreshToken
from session_guard.services.revocation_service import RevocationService
from session_guard.services.rotation_service import ClientMeta, FamilyState, RotationService
from session_guard.services.token_issuer import hash_secret
from session_guard.services.token_store import RefreshTokenStore
from session_guard.utils.datetime_helpers import ensure_utc
from session_guard.utils.exceptions import (
    AuthError,
    InvalidToken,
    ReuseDetected,
    TokenExpired,
    TokenNotFound,
    TokenRevoked,
)


@pytest.fixture
async def user(user_factory):
    return await user_factory()


@pytest.fixture
def rotation(db_session, issuer, clock):
    return RotationService(db_session, issuer, clock=clock)


@pytest.fixture
def store(db_session):
    return RefreshTokenStore(db_session)


async def _active_in_family(store, token_family):
    return [r for r in await store.list_family(token_family) if r.status == TokenStatus.ACTIVE]


class TestIssueInitial:
    """Test starting a new token family."""

    @pytest.mark.asyncio
    async def test_login_creates_family_with_one_active_record(self, rotation, store, user):
        """Should persist exactly one active record for a new family."""
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)

        records = await store.list_family(pair.token_family)
        assert len(records) == 1
        assert records[0].token_id == pair.token_id
        assert records[0].status == TokenStatus.ACTIVE
        assert records[0].replaced_by_token_id is None
        assert await rotation.family_state(pair.token_family) == FamilyState.NEW

    @pytest.mark.asyncio
    async def test_only_secret_hash_is_stored(self, rotation, store, issuer, user):
        """Should store the digest of the secret, never the token or secret itself."""
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)
        claims = issuer.verify_refresh(pair.refresh_token)

        record = await store.get_by_id(pair.token_id)
        assert record.token_hash == hash_secret(claims.secret)
        assert claims.secret not in record.token_hash
        assert record.token_hash not in pair.refresh_token

    @pytest.mark.asyncio
    async def test_record_expires_after_refresh_window(self, rotation, store, clock, user):
        """Should expire the record fourteen days after issue by default."""
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)

        record = await store.get_by_id(pair.token_id)
        assert ensure_utc(record.expires_at) == clock.now() + timedelta(days=14)
        assert pair.expires_in == 15 * 60

    @pytest.mark.asyncio
    async def test_client_metadata_is_recorded(self, rotation, store, user):
        """Should keep ip address and (truncated) user agent on the record."""
        client = ClientMeta(ip_address="203.0.113.9", user_agent="x" * 1000)
        pair = await rotation.issue_initial(user.user_id, user.username, user.role, client)

        record = await store.get_by_id(pair.token_id)
        assert record.ip_address == "203.0.113.9"
        assert len(record.user_agent) == 512

    @pytest.mark.asyncio
    async def test_each_login_starts_a_new_family(self, rotation, user):
        """Should give separate logins separate families."""
        first = await rotation.issue_initial(user.user_id, user.username, user.role)
        second = await rotation.issue_initial(user.user_id, user.username, user.role)

        assert first.token_family != second.token_family
        assert first.refresh_token != second.refresh_token


class TestRotate:
    """Test exchanging a refresh token for a new pair."""

    @pytest.mark.asyncio
    async def test_rotation_consumes_presented_record(self, rotation, store, user):
        """Should replace the presented record with one new active record in the same family."""
        first = await rotation.issue_initial(user.user_id, user.username, user.role)

        second = await rotation.rotate(first.refresh_token)

        assert second.token_family == first.token_family
        assert second.token_id != first.token_id
        assert second.refresh_token != first.refresh_token

        old = await store.get_by_id(first.token_id)
        assert old.status == TokenStatus.REVOKED
        assert old.replaced_by_token_id == second.token_id
        assert old.revoked_at is not None

        active = await _active_in_family(store, first.token_family)
        assert [r.token_id for r in active] == [second.token_id]
        assert await rotation.family_state(first.token_family) == FamilyState.ROTATED

    @pytest.mark.asyncio
    async def test_rotation_chain_keeps_one_active_record(self, rotation, store, user):
        """Should keep a single live record however many times the family rotates."""
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)
        for _ in range(4):
            pair = await rotation.rotate(pair.refresh_token)

        records = await store.list_family(pair.token_family)
        active = [r for r in records if r.status == TokenStatus.ACTIVE]
        assert len(records) == 5
        assert [r.token_id for r in active] == [pair.token_id]

    @pytest.mark.asyncio
    async def test_rotated_access_token_identifies_user(self, rotation, issuer, user):
        """Should mint an access token for the same identity."""
        first = await rotation.issue_initial(user.user_id, user.username, user.role)
        second = await rotation.rotate(first.refresh_token)

        claims = issuer.verify_access(second.access_token)
        assert claims.user_id == user.user_id
        assert claims.username == user.username

    @pytest.mark.asyncio
    async def test_rotation_signs_current_role(self, rotation, issuer, user):
        """Should carry a role change into the rotated tokens."""
        first = await rotation.issue_initial(user.user_id, user.username, user.role)
        user.role = UserRole.ADMIN.value
        await rotation.db.commit()

        second = await rotation.rotate(first.refresh_token)

        assert issuer.verify_access(second.access_token).role == "admin"
        assert issuer.verify_refresh(second.refresh_token).role == "admin"

    @pytest.mark.asyncio
    async def test_deactivated_owner_cannot_rotate(self, rotation, store, user):
        """Should revoke the family instead of rotating for a deactivated account."""
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)
        user.is_active = False
        await rotation.db.commit()

        with pytest.raises(TokenRevoked):
            await rotation.rotate(pair.refresh_token)

        records = await store.list_family(pair.token_family)
        assert len(records) == 1
        assert records[0].status == TokenStatus.REVOKED
        assert records[0].replaced_by_token_id is None

    @pytest.mark.asyncio
    async def test_successor_records_current_client(self, rotation, store, user):
        """Should store the rotating request's client metadata on the new record."""
        first = await rotation.issue_initial(user.user_id, user.username, user.role, ClientMeta("10.0.0.1", "old"))
        second = await rotation.rotate(first.refresh_token, ClientMeta("10.0.0.2", "new"))

        record = await store.get_by_id(second.token_id)
        assert (record.ip_address, record.user_agent) == ("10.0.0.2", "new")

    @pytest.mark.asyncio
    async def test_expired_record_is_rejected(self, rotation, clock, user):
        """Should raise TokenExpired once the record's window has passed."""
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)

        clock.advance(days=14, seconds=1)

        with pytest.raises(TokenExpired):
            await rotation.rotate(pair.refresh_token)
        assert await rotation.family_state(pair.token_family) == FamilyState.EXPIRED

    @pytest.mark.asyncio
    async def test_record_is_usable_until_exact_expiry(self, rotation, clock, user):
        """Should still rotate at the expiry instant itself."""
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)

        clock.advance(days=14)

        assert (await rotation.rotate(pair.refresh_token)).token_family == pair.token_family

    @pytest.mark.asyncio
    async def test_unknown_record_is_not_found(self, rotation, store, user):
        """Should raise TokenNotFound when the record no longer exists."""
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)
        record = await store.get_by_id(pair.token_id)
        await rotation.db.delete(record)
        await rotation.db.commit()

        with pytest.raises(TokenNotFound):
            await rotation.rotate(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_garbage_token_is_invalid(self, rotation):
        with pytest.raises(InvalidToken):
            await rotation.rotate("definitely.not.valid")

    @pytest.mark.asyncio
    async def test_access_token_cannot_rotate(self, rotation, user):
        """Should refuse an access token presented as a refresh token."""
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)

        with pytest.raises(InvalidToken):
            await rotation.rotate(pair.access_token)

    @pytest.mark.asyncio
    async def test_logged_out_token_is_revoked(self, rotation, issuer, clock, user):
        """Should raise TokenRevoked (not ReuseDetected) for a token revoked at logout."""
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)
        await RevocationService(rotation.db, issuer, clock=clock).revoke_one(pair.refresh_token)

        with pytest.raises(TokenRevoked):
            await rotation.rotate(pair.refresh_token)


class TestReuseDetection:
    """Test replay of consumed refresh tokens."""

    @pytest.mark.asyncio
    async def test_replay_revokes_entire_family(self, rotation, store, user):
        """Should fail the replay with ReuseDetected and leave no active record."""
        first = await rotation.issue_initial(user.user_id, user.username, user.role)
        await rotation.rotate(first.refresh_token)

        with pytest.raises(ReuseDetected):
            await rotation.rotate(first.refresh_token)

        records = await store.list_family(first.token_family)
        assert records
        assert all(r.status == TokenStatus.REVOKED for r in records)
        assert await _active_in_family(store, first.token_family) == []
        assert await rotation.family_state(first.token_family) == FamilyState.REVOKED

    @pytest.mark.asyncio
    async def test_sibling_of_reused_token_reports_revoked(self, rotation, user):
        """Should fail a not-yet-presented family member with TokenRevoked."""
        first = await rotation.issue_initial(user.user_id, user.username, user.role)
        second = await rotation.rotate(first.refresh_token)

        with pytest.raises(ReuseDetected):
            await rotation.rotate(first.refresh_token)

        with pytest.raises(TokenRevoked):
            await rotation.rotate(second.refresh_token)

    @pytest.mark.asyncio
    async def test_replay_leaves_other_families_alone(self, rotation, store, user):
        """Should confine the cascade to the compromised family."""
        laptop = await rotation.issue_initial(user.user_id, user.username, user.role)
        phone = await rotation.issue_initial(user.user_id, user.username, user.role)
        await rotation.rotate(laptop.refresh_token)

        with pytest.raises(ReuseDetected):
            await rotation.rotate(laptop.refresh_token)

        assert [r.token_id for r in await _active_in_family(store, phone.token_family)] == [phone.token_id]

    @pytest.mark.asyncio
    async def test_replay_emits_security_alert(self, rotation, user, caplog):
        """Should write the alert to the security logger."""
        first = await rotation.issue_initial(user.user_id, user.username, user.role)
        await rotation.rotate(first.refresh_token)

        with caplog.at_level(logging.WARNING, logger="session_guard.security"):
            with pytest.raises(ReuseDetected):
                await rotation.rotate(first.refresh_token, ClientMeta("198.51.100.7", "curl/8"))

        alerts = [r for r in caplog.records if r.name == "session_guard.security"]
        assert len(alerts) == 1
        assert str(first.token_family) in alerts[0].getMessage()
        assert "198.51.100.7" in alerts[0].getMessage()

    @pytest.mark.asyncio
    async def test_theft_scenario_over_two_days(self, rotation, store, clock, user):
        """Should detect an attacker replaying the day-one token after the owner rotated."""
        t0 = clock.now()
        r1 = await rotation.issue_initial(user.user_id, user.username, user.role)
        assert ensure_utc((await store.get_by_id(r1.token_id)).expires_at) == t0 + timedelta(days=14)

        clock.advance(days=1)
        r2 = await rotation.rotate(r1.refresh_token)
        assert ensure_utc((await store.get_by_id(r2.token_id)).expires_at) == t0 + timedelta(days=15)
        assert (await store.get_by_id(r1.token_id)).replaced_by_token_id == r2.token_id

        clock.advance(days=1)
        with pytest.raises(ReuseDetected):
            await rotation.rotate(r1.refresh_token)
        assert (await store.get_by_id(r2.token_id)).status == TokenStatus.REVOKED

        with pytest.raises(TokenRevoked):
            await rotation.rotate(r2.refresh_token)


class TestConcurrentRotation:
    """Test the compare-and-set that serialises competing rotations."""

    @pytest.mark.asyncio
    async def test_consume_succeeds_only_once(self, rotation, store, clock, user):
        """Should let exactly one conditional update win."""
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)
        first = await rotation.rotate(pair.refresh_token)

        # The record is already consumed, so a second consume must lose
        assert await store.consume(pair.token_id, first.token_id, clock.now()) is False
        await store.rollback()

    @pytest.mark.asyncio
    async def test_stale_read_loses_and_is_treated_as_reuse(
        self, rotation, store, monkeypatch, user
    ):
        """Should roll back the speculative successor when the record changed after the read."""
        user_id, username, role = user.user_id, user.username, user.role
        pair = await rotation.issue_initial(user_id, username, role)
        winner = await rotation.rotate(pair.refresh_token)

        consumed = await store.get_by_id(pair.token_id)
        # What a request that read the row before the winner committed would have seen
        stale = RefreshToken(
            token_id=consumed.token_id,
            user_id=consumed.user_id,
            token_hash=consumed.token_hash,
            token_family=consumed.token_family,
            status=TokenStatus.ACTIVE,
            created_at=consumed.created_at,
            expires_at=consumed.expires_at,
        )

        async def stale_lookup(token_hash):
            return stale

        monkeypatch.setattr(rotation.store, "get_by_hash", stale_lookup)

        with pytest.raises(ReuseDetected):
            await rotation.rotate(pair.refresh_token)

        records = await store.list_family(pair.token_family)
        # No orphaned successor from the losing attempt
        assert {r.token_id for r in records} == {pair.token_id, winner.token_id}
        assert all(r.status == TokenStatus.REVOKED for r in records)

    @pytest.mark.asyncio
    async def test_simultaneous_refresh_has_one_winner(self, session_factory, issuer, clock, user):
        """Should let one of two concurrent refreshes succeed and flag the other as reuse."""
        async with session_factory() as setup_db:
            pair = await RotationService(setup_db, issuer, clock=clock).issue_initial(
                user.user_id, user.username, user.role
            )

        async def attempt():
            async with session_factory() as db:
                return await RotationService(db, issuer, clock=clock).rotate(pair.refresh_token)

        results = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], ReuseDetected)

        async with session_factory() as check_db:
            records = await RefreshTokenStore(check_db).list_family(pair.token_family)
        assert len(records) == 2
        assert all(r.status == TokenStatus.REVOKED for r in records)


class TestFamilyState:
    @pytest.mark.asyncio
    async def test_unknown_family_has_no_state(self, rotation):
        import uuid

        assert await rotation.family_state(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_revoked_family(self, rotation, issuer, clock, user):
        pair = await rotation.issue_initial(user.user_id, user.username, user.role)
        await RevocationService(rotation.db, issuer, clock=clock).revoke_family(pair.token_family)

        assert await rotation.family_state(pair.token_family) == FamilyState.REVOKED


def test_auth_errors_share_a_base():
    for exc_type in (InvalidToken, TokenNotFound, TokenExpired, TokenRevoked, ReuseDetected):
        assert issubclass(exc_type, AuthError)
