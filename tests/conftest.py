"""Shared pytest fixtures for memloop tests."""

from __future__ import annotations

import os
from dataclasses import replace

import pytest
import pytest_asyncio

from memloop.config import Config, DeploymentMode
from memloop.correlation import CorrelationStore
from memloop.dispatch import Dispatcher, ToolContext
from memloop.tools import build_registry

MEMORY_URL = "http://memory.test"
ECHO_URL = "http://echo.test"
REST_URL = "http://rest.test"

START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock for time-dependent tests."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep MEMLOOP_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("MEMLOOP_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Config:
    """Direct-mode config pointing at test backends."""
    return Config(
        mode=DeploymentMode.DIRECT,
        memory_url=MEMORY_URL,
        echo_url=ECHO_URL,
        rest_url=REST_URL,
        token="svc-token",
        echo_token=None,
        api_key=None,
        user_id=None,
        request_timeout=5.0,
        retention_seconds=3600.0,
        sweep_interval_seconds=600.0,
    )


@pytest.fixture
def user_config(config) -> Config:
    """Direct-mode config with a caller identity."""
    return replace(config, user_id="user-42")


@pytest.fixture
def proxied_config(config) -> Config:
    return replace(config, mode=DeploymentMode.PROXIED, rest_url=None, token=None, api_key="personal-key")


def _make_context(config: Config, clock: FakeClock) -> ToolContext:
    store = CorrelationStore(
        retention_seconds=config.retention_seconds,
        sweep_interval_seconds=config.sweep_interval_seconds,
        clock=clock,
    )
    return ToolContext.from_config(config, store=store)


@pytest_asyncio.fixture
async def context(config, clock):
    ctx = _make_context(config, clock)
    yield ctx
    await ctx.aclose()


@pytest_asyncio.fixture
async def dispatcher_for(clock):
    """Build a dispatcher for another config; its clients are closed on teardown."""
    contexts: list[ToolContext] = []

    def build(config: Config) -> Dispatcher:
        ctx = _make_context(config, clock)
        contexts.append(ctx)
        return Dispatcher(build_registry(config.mode), ctx)

    yield build
    for ctx in contexts:
        await ctx.aclose()


@pytest_asyncio.fixture
async def dispatcher(context):
    return Dispatcher(build_registry(context.config.mode), context)

