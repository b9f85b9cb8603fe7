"""Tests for cancellation tokens and the request registry."""

import asyncio

import pytest

from canvas_ask.core.requests import CancellationToken, RequestRegistry


@pytest.mark.asyncio
async def test_sleep_completes_without_cancel():
    """Test a plain sleep."""
    token = CancellationToken()
    assert await token.sleep(0.01) is False


@pytest.mark.asyncio
async def test_sleep_interrupted_by_cancel():
    """Test that cancel wakes a sleeper early."""
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, token.cancel, "stop")
    started = loop.time()
    assert await token.sleep(5) is True
    assert loop.time() - started < 1
    assert token.reason == "stop"


@pytest.mark.asyncio
async def test_sleep_after_cancel_returns_immediately():
    """Test an already fired token."""
    token = CancellationToken()
    token.cancel()
    assert token.cancelled
    assert await token.sleep(5) is True


def test_cancel_keeps_first_reason():
    """Test that a second cancel does not overwrite the reason."""
    token = CancellationToken()
    token.cancel("first")
    token.cancel("second")
    assert token.reason == "first"


def test_acquire_supersedes_previous():
    """Test that a new request of the same kind cancels the old one."""
    registry = RequestRegistry()
    first = registry.acquire("ask")
    second = registry.acquire("ask")
    assert first.cancelled
    assert not second.cancelled
    assert registry.active("ask") is second


def test_kinds_are_independent():
    """Test that different kinds do not interfere."""
    registry = RequestRegistry()
    ask = registry.acquire("ask")
    registry.acquire("export")
    assert not ask.cancelled


def test_release_only_current_token():
    """Test that releasing a stale token keeps the current one."""
    registry = RequestRegistry()
    first = registry.acquire("ask")
    second = registry.acquire("ask")
    registry.release("ask", first)
    assert registry.active("ask") is second
    registry.release("ask", second)
    assert registry.active("ask") is None


def test_cancel_by_kind():
    """Test cancelling the outstanding request."""
    registry = RequestRegistry()
    assert registry.cancel("ask") is False
    token = registry.acquire("ask")
    assert registry.cancel("ask", "user") is True
    assert token.cancelled
    assert token.reason == "user"
