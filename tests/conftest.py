"""Shared fixtures: a controllable clock, scripted adapters and a controller factory."""

import asyncio

import pytest

from adapters.local.manual_capture import ManualCaptureAdapter
from adapters.local.scripted_ai import ScriptedAIBackend
from adapters.local.scripted_stt import ScriptedSTTAdapter
from context_store import ContextStore
from domain.models import AutoSuggestConfig
from events import EventBus, EventKind
from ports.clock import ClockPort
from use_cases.session import SessionController, SessionSettings


class FakeClock(ClockPort):
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def now_ms(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class EventRecorder:
    """Collects every bus event as (kind, payload)."""

    def __init__(self, bus: EventBus):
        self.events = []
        self.unsubscribe = bus.subscribe_all(lambda kind, payload: self.events.append((kind, payload)))

    def of(self, kind: EventKind) -> list:
        return [payload for k, payload in self.events if k is kind]

    def clear(self) -> None:
        self.events.clear()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


@pytest.fixture
def store(clock, bus):
    return ContextStore(clock, bus=bus)


@pytest.fixture
def capture(clock):
    return ManualCaptureAdapter(clock=clock)


@pytest.fixture
def stt(clock):
    return ScriptedSTTAdapter(clock=clock)


@pytest.fixture
def ai_backend():
    return ScriptedAIBackend()


@pytest.fixture
def settings():
    return SessionSettings(
        ai_timeout_ms=20000,
        timeout_sweep_interval_ms=10,
        stt_reconnect_delay_ms=0,
        auto_suggest=AutoSuggestConfig(enabled=False),
    )


@pytest.fixture
def make_controller(clock, bus, stt, ai_backend, settings):
    def factory(capture=None, **overrides):
        for name, value in overrides.items():
            setattr(settings, name, value)
        return SessionController(
            capture or ManualCaptureAdapter(clock=clock),
            stt,
            ai_backend,
            clock=clock,
            bus=bus,
            settings=settings,
        )

    return factory
