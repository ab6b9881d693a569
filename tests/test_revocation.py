"""Tests for sign-out revocation and the in-memory TTL store."""

import asyncio

import pytest

from authcore.service.revocation import REVOKED_SENTINEL, RevocationManager
from authcore.service.tokens import TokenClaims
from authcore.storage.memory import MemoryRevocationStore

DAY = 24 * 3600


@pytest.fixture
def store(clock):
    return MemoryRevocationStore(clock=clock)


@pytest.fixture
def manager(store, clock):
    return RevocationManager(store, clock=clock)


def _claims(clock, *, lifetime=DAY, issued_ago=0):
    iat = int(clock.now) - issued_ago
    return TokenClaims(
        id="acc-1",
        username="alice",
        is_verified=True,
        is_admin=False,
        iat=iat,
        exp=iat + lifetime,
    )


class RecordingStore:
    def __init__(self):
        self.calls = []
        self.values = {}

    async def set_with_ttl(self, key, value, ttl_seconds):
        self.calls.append((key, value, ttl_seconds))
        self.values[key] = value

    async def get(self, key):
        return self.values.get(key)

    async def close(self):
        pass


@pytest.mark.asyncio
async def test_sign_out_inserts_entry_with_remaining_lifetime(clock):
    recorder = RecordingStore()
    manager = RevocationManager(recorder, clock=clock)
    claims = _claims(clock, issued_ago=3600)

    await manager.sign_out(claims)

    assert recorder.calls == [(claims.revocation_key(), REVOKED_SENTINEL, DAY - 3600)]


@pytest.mark.asyncio
async def test_ttl_rounds_up_fractional_remaining(clock):
    recorder = RecordingStore()
    manager = RevocationManager(recorder, clock=clock)
    claims = _claims(clock, lifetime=100)
    clock.advance(10.25)

    await manager.sign_out(claims)

    assert recorder.calls[0][2] == 90


@pytest.mark.asyncio
async def test_ttl_covers_clock_skew_leeway(clock):
    recorder = RecordingStore()
    manager = RevocationManager(recorder, clock=clock, leeway_seconds=30)
    claims = _claims(clock, lifetime=100)

    await manager.sign_out(claims)

    assert recorder.calls[0][2] == 130


@pytest.mark.asyncio
async def test_sign_out_within_leeway_window_still_recorded(clock):
    recorder = RecordingStore()
    manager = RevocationManager(recorder, clock=clock, leeway_seconds=30)
    claims = _claims(clock, lifetime=60)
    clock.advance(70)

    await manager.sign_out(claims)

    assert recorder.calls == [(claims.revocation_key(), REVOKED_SENTINEL, 20)]


@pytest.mark.asyncio
async def test_sign_out_of_expired_token_is_noop(clock):
    recorder = RecordingStore()
    manager = RevocationManager(recorder, clock=clock)
    claims = _claims(clock, lifetime=60)
    clock.advance(60)

    await manager.sign_out(claims)

    assert recorder.calls == []


@pytest.mark.asyncio
async def test_sign_out_twice_is_idempotent(manager, store, clock):
    claims = _claims(clock)

    await manager.sign_out(claims)
    await manager.sign_out(claims)

    assert await manager.is_revoked(claims) is True
    assert len(store) == 1


@pytest.mark.asyncio
async def test_concurrent_sign_out_of_same_claims(manager, store, clock):
    claims = _claims(clock)

    await asyncio.gather(*(manager.sign_out(claims) for _ in range(10)))

    assert await store.get(claims.revocation_key()) == REVOKED_SENTINEL
    assert len(store) == 1


@pytest.mark.asyncio
async def test_entry_lives_exactly_as_long_as_token(manager, store, clock):
    claims = _claims(clock, issued_ago=600)
    await manager.sign_out(claims)

    remaining = await store.ttl(claims.revocation_key())
    assert abs(remaining - (claims.exp - clock.now)) < 1

    clock.advance(claims.exp - clock.now - 1)
    assert await manager.is_revoked(claims) is True

    clock.advance(1)
    assert await manager.is_revoked(claims) is False
    assert len(store) == 0


@pytest.mark.asyncio
async def test_other_tokens_unaffected(manager, clock):
    first = _claims(clock)
    clock.advance(1)
    second = _claims(clock)

    await manager.sign_out(first)

    assert await manager.is_revoked(first) is True
    assert await manager.is_revoked(second) is False


class TestMemoryRevocationStore:
    @pytest.mark.asyncio
    async def test_non_positive_ttl_not_stored(self, store):
        await store.set_with_ttl("k", "invalid", 0)
        await store.set_with_ttl("k2", "invalid", -5)
        assert await store.get("k") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_sweep_removes_expired_entries(self, clock):
        store = MemoryRevocationStore(clock=clock, sweep_interval=10)
        await store.set_with_ttl("short", "invalid", 5)
        clock.advance(11)
        await store.set_with_ttl("long", "invalid", 100)
        assert len(store) == 1
        assert await store.get("long") == "invalid"

    @pytest.mark.asyncio
    async def test_close_clears_entries(self, store):
        await store.set_with_ttl("k", "invalid", 10)
        await store.close()
        assert await store.get("k") is None
