"""
Integration tests for the session controller.

Drives a full session through the local adapters: scripted capture pushes
audio, the scripted STT provider emits results, and the scripted AI backend
streams replies, all on the test's event loop with a fake clock.
"""

import asyncio

import pytest

from adapters.local.manual_capture import ManualCaptureAdapter
from adapters.local.scripted_ai import DEFAULT_CANNED_RESPONSE, ScriptedAIBackend
from adapters.local.scripted_stt import ScriptedSTTAdapter
from conftest import wait_until
from domain.errors import ErrorKind
from domain.models import AudioSource, AutoSuggestConfig, RequestStatus, SessionState
from events import EventKind
from use_cases.session import SessionController

pytestmark = pytest.mark.asyncio

PCM = b"\x00\x10" * 160


class GatedSTT(ScriptedSTTAdapter):
    """Holds connect() open until the test releases it."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.gate = asyncio.Event()

    async def connect(self) -> None:
        await self.gate.wait()
        await super().connect()


class TestLifecycle:
    async def test_transcript_and_key_point_scenario(self, make_controller, stt):
        controller = make_controller()
        started = await controller.start()
        assert started.ok

        for i, word in enumerate(["Hello", "world", "testing"]):
            stt.emit_result(f"u{i}", word, is_final=True)

        snapshot = controller.get_snapshot().value
        assert [s.text for s in snapshot.segments] == ["Hello", "world", "testing"]
        assert all(s.is_final for s in snapshot.segments)

        assert controller.add_key_point("remember this").ok
        key_points = controller.get_snapshot().value.key_points
        assert [p.text for p in key_points] == ["remember this"]

        await controller.stop()

    async def test_start_twice_is_rejected(self, make_controller):
        controller = make_controller()
        first = await controller.start()

        second = await controller.start()

        assert not second.ok
        assert second.error is ErrorKind.INVALID_STATE_TRANSITION
        assert second.value == first.value
        await controller.stop()

    async def test_stop_without_session_is_a_no_op(self, make_controller, recorder):
        controller = make_controller()

        outcome = await controller.stop()

        assert not outcome.ok
        assert outcome.error is ErrorKind.INVALID_STATE_TRANSITION
        assert controller.state is SessionState.IDLE
        assert recorder.of(EventKind.SESSION_ENDED) == []

    async def test_session_events_and_summary(self, make_controller, stt, clock, recorder):
        controller = make_controller()
        await controller.start()
        stt.emit_result("u1", "one two three", is_final=True)
        stt.emit_result("u2", "still talking")
        clock.advance(2500)

        outcome = await controller.stop()

        summary = outcome.value
        assert summary["final_segment_count"] == 2
        assert summary["flushed_interim"] == 1
        assert summary["duration_ms"] == 2500
        assert summary["total_words"] == 5
        assert len(recorder.of(EventKind.SESSION_STARTED)) == 1
        assert recorder.of(EventKind.SESSION_ENDED) == [summary]
        assert controller.state is SessionState.STOPPED

    async def test_restart_after_stop_starts_fresh(self, make_controller, stt):
        controller = make_controller()
        await controller.start()
        stt.emit_result("u1", "old", is_final=True)
        await controller.stop()

        outcome = await controller.start()

        assert outcome.ok
        assert controller.get_snapshot().value.segments == ()
        await controller.stop()


class TestPause:
    async def test_pause_drops_audio_and_keeps_transcript(self, make_controller, stt):
        capture = ManualCaptureAdapter()
        controller = make_controller(capture=capture)
        await controller.start()
        capture.push(AudioSource.MIC, PCM)
        stt.emit_result("u1", "before pause", is_final=True)

        assert (await controller.toggle_pause()).value == "paused"
        capture.push(AudioSource.MIC, PCM)
        capture.push(AudioSource.SYSTEM, PCM)
        assert len(stt.submitted) == 1

        assert (await controller.toggle_pause()).value == "active"
        capture.push(AudioSource.MIC, PCM)

        assert len(stt.submitted) == 2
        assert [s.text for s in controller.get_snapshot().value.segments] == ["before pause"]
        assert controller.mux.stats()["mic"]["dropped_paused"] == 1
        await controller.stop()

    async def test_toggle_without_session_fails(self, make_controller):
        controller = make_controller()

        outcome = await controller.toggle_pause()

        assert outcome.error is ErrorKind.INVALID_STATE_TRANSITION

    async def test_stop_while_paused(self, make_controller):
        controller = make_controller()
        await controller.start()
        await controller.toggle_pause()

        outcome = await controller.stop()

        assert outcome.ok
        assert controller.state is SessionState.STOPPED
        assert not controller.mux.paused


class TestStopSemantics:
    async def test_stop_cancels_ai_and_blocks_late_events(self, make_controller, ai_backend, stt, recorder):
        controller = make_controller()
        await controller.start()
        request_id = controller.trigger_action("talking-point").value

        outcome = await controller.stop()
        assert outcome.value["cancelled_requests"] == 1
        assert request_id in ai_backend.cancelled

        recorder.clear()
        ai_backend.chunk(request_id, "too late")
        stt.emit_result("u9", "too late", is_final=True)

        assert recorder.events == []
        assert len(controller.store) == 0

    async def test_audio_after_stop_is_dropped(self, make_controller, stt):
        capture = ManualCaptureAdapter()
        controller = make_controller(capture=capture)
        await controller.start()
        await controller.stop()

        capture.push(AudioSource.MIC, PCM)

        assert stt.submitted == []


class TestCapturePermission:
    async def test_all_sources_denied_aborts_start(self, make_controller, stt):
        capture = ManualCaptureAdapter(denied={AudioSource.MIC, AudioSource.SYSTEM})
        controller = make_controller(capture=capture)

        outcome = await controller.start()

        assert not outcome.ok
        assert outcome.error is ErrorKind.CAPTURE_PERMISSION
        assert outcome.detail == "no capture source is permitted"
        assert controller.state is SessionState.STOPPED
        assert not stt.is_connected()

    async def test_one_source_denied_still_starts(self, make_controller):
        capture = ManualCaptureAdapter(denied={AudioSource.SYSTEM})
        controller = make_controller(capture=capture)

        outcome = await controller.start()

        assert outcome.ok
        assert controller.state is SessionState.ACTIVE
        await controller.stop()

    async def test_losing_last_source_ends_session(self, make_controller, recorder):
        capture = ManualCaptureAdapter(denied={AudioSource.SYSTEM})
        controller = make_controller(capture=capture)
        await controller.start()

        capture.revoke(AudioSource.MIC)

        await wait_until(lambda: controller.state is SessionState.STOPPED)
        assert len(recorder.of(EventKind.SESSION_ENDED)) == 1

    async def test_losing_one_of_two_sources_keeps_session(self, make_controller):
        capture = ManualCaptureAdapter()
        controller = make_controller(capture=capture)
        await controller.start()

        capture.revoke(AudioSource.SYSTEM)

        assert controller.state is SessionState.ACTIVE
        assert controller.mux.is_active(AudioSource.MIC)
        await controller.stop()


class TestProviderLoss:
    async def test_stt_disconnect_keeps_session_and_context(self, make_controller, stt):
        controller = make_controller()
        await controller.start()
        stt.emit_result("u1", "kept", is_final=True)

        stt.drop_connection()
        await wait_until(lambda: controller.coordinator.connected)

        assert controller.state is SessionState.ACTIVE
        assert [s.text for s in controller.get_snapshot().value.segments] == ["kept"]
        await controller.stop()


class TestAIActions:
    async def test_manual_trigger_allowed_without_session(self, make_controller, ai_backend):
        controller = make_controller()

        outcome = controller.trigger_action("follow-up-action", {"note": "x"})

        assert outcome.ok
        invocation = ai_backend.invocations[-1]
        assert invocation["metadata"]["origin"] == "manual"
        assert invocation["metadata"]["note"] == "x"

    async def test_mock_context_trigger(self, make_controller, ai_backend):
        controller = make_controller()

        controller.trigger_action("talking-point", mock_context=["Can we ship Friday?", "Maybe"])

        context = ai_backend.invocations[-1]["context"]
        assert [s.text for s in context.segments] == ["Can we ship Friday?", "Maybe"]

    async def test_unknown_action_is_invalid_argument(self, make_controller):
        controller = make_controller()

        outcome = controller.trigger_action("dance")

        assert outcome.error is ErrorKind.INVALID_ARGUMENT

    async def test_manual_trigger_supersedes_in_same_slot(self, make_controller):
        controller = make_controller()
        first = controller.trigger_action("talking-point").value
        second = controller.trigger_action("talking-point").value

        live = controller.orchestrator.live_request("talking-points")
        assert live.request_id == second
        assert live.request_id != first

    async def test_canned_backend_streams_to_completion(self, clock, bus, stt, settings, recorder):
        controller = SessionController(
            ManualCaptureAdapter(), stt, ScriptedAIBackend(DEFAULT_CANNED_RESPONSE),
            clock=clock, bus=bus, settings=settings,
        )
        await controller.start()
        controller.trigger_action("talking-point")

        await wait_until(lambda: any(
            p["phase"] == "completed" for p in recorder.of(EventKind.SUGGESTION)
        ))
        completed = [p for p in recorder.of(EventKind.SUGGESTION) if p["phase"] == "completed"][0]
        assert completed["result"]["talking_points"][0] == "Who owns the next step here?"
        await controller.stop()

    async def test_watchdog_times_out_silent_request(self, make_controller, clock, recorder):
        controller = make_controller(ai_timeout_ms=1000)
        await controller.start()
        request_id = controller.trigger_action("talking-point").value

        clock.advance(1000)

        await wait_until(lambda: any(
            p["phase"] == "failed" for p in recorder.of(EventKind.SUGGESTION)
        ))
        failed = recorder.of(EventKind.SUGGESTION)[-1]
        assert failed["request_id"] == request_id
        assert failed["error_kind"] == "timeout"
        await controller.stop()

    async def test_auto_suggest_fires_through_session(self, make_controller, stt, ai_backend):
        controller = make_controller(
            auto_suggest=AutoSuggestConfig(enabled=True, min_interval_ms=0, min_new_segments_before_trigger=2),
        )
        await controller.start()

        stt.emit_result("u1", "first point", is_final=True)
        stt.emit_result("u2", "second point", is_final=True)

        assert len(ai_backend.invocations) == 1
        assert ai_backend.invocations[0]["metadata"]["origin"] == "auto"
        live = controller.orchestrator.live_request("talking-points")
        assert live.status is RequestStatus.PENDING
        await controller.stop()

    async def test_auto_suggest_silent_while_paused(self, make_controller, stt, ai_backend):
        controller = make_controller(
            auto_suggest=AutoSuggestConfig(enabled=True, min_interval_ms=0, min_new_segments_before_trigger=1),
        )
        await controller.start()
        await controller.toggle_pause()

        stt.emit_result("u1", "said while paused", is_final=True)

        assert ai_backend.invocations == []
        await controller.stop()


class TestSettings:
    async def test_auto_suggest_config_survives_restart(self, make_controller):
        controller = make_controller()
        controller.set_auto_suggest(True)
        controller.set_auto_suggest_config(min_interval_ms=500)

        await controller.start()
        state = controller.get_state().value

        assert state["auto_suggest"]["config"]["enabled"] is True
        assert state["auto_suggest"]["config"]["min_interval_ms"] == 500
        await controller.stop()

    async def test_invalid_auto_suggest_config(self, make_controller):
        controller = make_controller()

        outcome = controller.set_auto_suggest_config(min_interval_ms=-5)

        assert outcome.error is ErrorKind.INVALID_ARGUMENT

    async def test_rejected_context_size_keeps_session_working(self, make_controller, stt, ai_backend):
        controller = make_controller(
            auto_suggest=AutoSuggestConfig(enabled=True, min_interval_ms=0, min_new_segments_before_trigger=1),
        )
        await controller.start()

        outcome = controller.set_auto_suggest_config(context_segments="ten")
        assert outcome.error is ErrorKind.INVALID_ARGUMENT

        assert controller.trigger_action("custom").ok
        stt.emit_result("u1", "still transcribing", is_final=True)

        assert controller.store.get("0:mic:u1").is_final
        assert len(ai_backend.invocations) == 2
        await controller.stop()

    async def test_api_keys_routed_to_providers(self, make_controller, stt, ai_backend):
        controller = make_controller()

        assert controller.set_api_key("stt", "stt-key").ok
        assert controller.set_api_key("ai", "ai-key").ok
        assert controller.set_api_key("tts", "x").error is ErrorKind.INVALID_ARGUMENT
        assert controller.set_api_key("ai", "").error is ErrorKind.INVALID_ARGUMENT
        assert stt.api_key == "stt-key"
        assert ai_backend.api_key == "ai-key"

    async def test_context_commands_validate_arguments(self, make_controller):
        controller = make_controller()

        assert controller.add_key_point("   ").error is ErrorKind.INVALID_ARGUMENT
        assert controller.get_snapshot(last_n=-1).error is ErrorKind.INVALID_ARGUMENT
        assert controller.start_source("webcam").error is ErrorKind.INVALID_ARGUMENT

    async def test_clear_returns_previous_summary(self, make_controller, stt):
        controller = make_controller()
        await controller.start()
        stt.emit_result("u1", "a b", is_final=True)

        cleared = controller.clear()

        assert cleared.value["final_segment_count"] == 1
        assert len(controller.store) == 0
        await controller.stop()

    async def test_state_reports_components(self, make_controller):
        controller = make_controller()
        await controller.start()

        state = controller.get_state().value

        assert state["state"] == "active"
        assert state["stt"]["connected"] is True
        assert set(state["audio"]["sources"]) == {"mic", "system"}
        assert state["ai"]["live"] == {}
        assert state["watchdog_running"] is True
        await controller.stop()


class TestConcurrency:
    async def test_second_toggle_for_same_target_is_coalesced(self, clock, bus, ai_backend, settings, recorder):
        stt = GatedSTT(clock=clock)
        controller = SessionController(
            ManualCaptureAdapter(clock=clock), stt, ai_backend, clock=clock, bus=bus, settings=settings,
        )
        starting = asyncio.ensure_future(controller.start())
        await wait_until(lambda: controller.state is SessionState.ACTIVE)

        first = asyncio.ensure_future(controller.toggle_pause())
        second = asyncio.ensure_future(controller.toggle_pause())
        await asyncio.sleep(0)
        assert second.done()
        assert not first.done()

        stt.gate.set()
        started, paused, coalesced = await asyncio.gather(starting, first, second)

        assert started.ok
        assert paused.value == coalesced.value == "paused"
        assert controller.state is SessionState.PAUSED
        session_statuses = [p["status"] for p in recorder.of(EventKind.STATUS) if p["component"] == "session"]
        assert session_statuses == ["paused"]
        await controller.stop()

    async def test_rapid_cycles_leave_consistent_state(self, make_controller, stt):
        controller = make_controller()

        for _ in range(5):
            started, paused, resumed, stopped = await asyncio.gather(
                controller.start(),
                controller.toggle_pause(),
                controller.toggle_pause(),
                controller.stop(),
            )

            assert started.ok
            assert paused.value == "paused"
            assert resumed.value == "active"
            assert stopped.ok
            state = controller.get_state().value
            assert state["state"] == "stopped"
            assert state["watchdog_running"] is False
            assert state["audio"]["paused"] is False
            assert state["stt"]["connected"] is False
            assert not stt.is_connected()

    async def test_toggle_queued_behind_stop_fails_cleanly(self, make_controller):
        controller = make_controller()

        started, paused, stopped, late = await asyncio.gather(
            controller.start(),
            controller.toggle_pause(),
            controller.stop(),
            controller.toggle_pause(),
        )

        assert started.ok
        assert paused.value == "paused"
        assert stopped.ok
        assert late.error is ErrorKind.INVALID_STATE_TRANSITION
        assert controller.state is SessionState.STOPPED
        assert not controller.mux.paused
