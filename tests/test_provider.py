"""
Tests for the provider run state machine.

Runs are replayed by the ScriptedProvider and polled on a fake scheduler,
so every test is deterministic and nothing sleeps for real.
"""

import asyncio
import json

import pytest

from openagency.agents import response_to_text
from openagency.capabilities import FunctionCapability, Parameter
from openagency.config import AgencyConfig
from openagency.events import EventType
from openagency.exceptions import (
    ProviderError,
    RunCancelledError,
    RunFailedError,
    RunTimeoutError,
    UnsupportedActionError,
)
from openagency.providers import ScriptedRun, ScriptedStep, ThreadMessage
from openagency.scheduling import CancellationToken


def _clock_capability(calls):
    def get_time(timezone=None):
        calls.append(timezone)
        return {"hour": 12, "minute": 30}

    return FunctionCapability(
        "getTimeTool",
        get_time,
        description="Returns the time.",
        parameters={"timezone": False},
    )


async def _conversation(provider, capabilities=()):
    assistant_id = await provider.create_assistant("helper", "Be helpful.", list(capabilities))
    thread_id = await provider.create_thread()
    return assistant_id, thread_id


def _outputs(provider, index=0):
    return [json.loads(output.output) for output in provider.submitted[index]]


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestRunStateMachine:
    @pytest.mark.asyncio
    async def test_full_run_with_one_tool_call(self, make_provider, scheduler):
        calls = []
        capability = _clock_capability(calls)
        provider = make_provider()
        provider.queue(
            ScriptedRun(
                steps=[
                    "queued",
                    "in_progress",
                    ScriptedStep.calling("getTimeTool", {"timezone": "UTC"}),
                    "completed",
                ],
                reply=lambda outputs: f"It is {json.loads(outputs[0])['hour']} o'clock",
            )
        )
        assistant_id, thread_id = await _conversation(provider, [capability])

        result = await provider.send_thread_message(
            assistant_id, thread_id, "What time is it?", [capability]
        )

        assert response_to_text(result.response) == "It is 12 o'clock"
        assert calls == ["UTC"]
        assert len(provider.submitted) == 1
        assert _outputs(provider) == [{"hour": 12, "minute": 30}]
        assert provider.polls(result.run_id) == 4
        assert scheduler.sleeps == [5.0, 0.5]
        assert provider.cancelled_runs == []

    @pytest.mark.asyncio
    async def test_poll_intervals_come_from_config(self, make_provider, scheduler):
        provider = make_provider(config=AgencyConfig(poll_interval=0.1, queued_poll_interval=2.0))
        provider.queue(ScriptedRun(steps=["queued", "queued", "in_progress", "completed"]))
        assistant_id, thread_id = await _conversation(provider)

        await provider.send_thread_message(assistant_id, thread_id, "hi", [])

        assert scheduler.sleeps == [2.0, 2.0, 0.1]

    @pytest.mark.asyncio
    async def test_unknown_status_is_polled_like_in_progress(self, make_provider, scheduler):
        provider = make_provider()
        provider.queue(ScriptedRun(steps=["cancelling", "completed"], reply="ok"))
        assistant_id, thread_id = await _conversation(provider)

        result = await provider.send_thread_message(assistant_id, thread_id, "hi", [])

        assert response_to_text(result.response) == "ok"
        assert scheduler.sleeps == [0.5]

    @pytest.mark.asyncio
    async def test_message_is_posted_to_thread(self, make_provider):
        provider = make_provider()
        provider.queue(ScriptedRun(reply="hello"))
        assistant_id, thread_id = await _conversation(provider)

        await provider.send_thread_message(assistant_id, thread_id, "Hi there", [])

        user_messages = [m for m in provider.thread_messages[thread_id] if m.role == "user"]
        assert response_to_text(user_messages[0].content) == "Hi there"

    @pytest.mark.asyncio
    async def test_batch_outputs_are_submitted_together_in_order(self, make_provider):
        seen = []

        def echo(word):
            seen.append(word)
            return word.upper()

        capability = FunctionCapability("echo", echo, parameters={"word": True})
        provider = make_provider()
        provider.queue(
            ScriptedRun(
                steps=[
                    ScriptedStep.calling_many(("echo", {"word": "a"}), ("echo", {"word": "b"})),
                    "completed",
                ],
                reply="done",
            )
        )
        assistant_id, thread_id = await _conversation(provider, [capability])

        await provider.send_thread_message(assistant_id, thread_id, "go", [capability])

        assert seen == ["a", "b"]
        assert len(provider.submitted) == 1
        submitted = provider.submitted[0]
        assert [json.loads(o.output) for o in submitted] == ["A", "B"]
        assert submitted[0].tool_call_id != submitted[1].tool_call_id

    @pytest.mark.asyncio
    async def test_reply_from_other_runs_is_ignored(self, make_provider):
        provider = make_provider()
        provider.queue(ScriptedRun(reply="unused"))
        assistant_id, thread_id = await _conversation(provider)
        provider.thread_messages[thread_id].append(
            ThreadMessage(
                id="msg_old",
                role="assistant",
                run_id="run_old",
                content=[{"type": "text", "text": {"value": "stale"}}],
            )
        )
        provider._reply = lambda active: None

        result = await provider.send_thread_message(assistant_id, thread_id, "hi", [])

        assert result.response == []
        assert response_to_text(result.response) == ""

    @pytest.mark.asyncio
    async def test_run_events_are_published(self, make_provider, events):
        provider = make_provider(events=events)
        provider.queue(ScriptedRun(reply="ok"))
        assistant_id, thread_id = await _conversation(provider)

        await provider.send_thread_message(assistant_id, thread_id, "hi", [])

        kinds = [event.type for event in events.history]
        assert kinds == [
            EventType.ASSISTANT_CREATED.value,
            EventType.THREAD_CREATED.value,
            EventType.RUN_CREATED.value,
            EventType.RUN_COMPLETED.value,
        ]
        assert all(event.source_type == "Provider" for event in events.history)

    @pytest.mark.asyncio
    async def test_empty_queue_without_default_reply(self, make_provider):
        provider = make_provider()
        assistant_id, thread_id = await _conversation(provider)

        with pytest.raises(ProviderError):
            await provider.send_thread_message(assistant_id, thread_id, "hi", [])

    @pytest.mark.asyncio
    async def test_default_reply_is_used_when_queue_is_empty(self, make_provider):
        provider = make_provider(default_reply="canned")
        assistant_id, thread_id = await _conversation(provider)

        result = await provider.send_thread_message(assistant_id, thread_id, "hi", [])

        assert response_to_text(result.response) == "canned"


# ---------------------------------------------------------------------------
# Tool dispatch failures become outputs
# ---------------------------------------------------------------------------


class TestDispatchErrors:
    async def _run_single_call(self, provider, step, capabilities):
        provider.queue(ScriptedRun(steps=[step, "completed"], reply="recovered"))
        assistant_id, thread_id = await _conversation(provider, capabilities)
        result = await provider.send_thread_message(assistant_id, thread_id, "go", capabilities)
        assert response_to_text(result.response) == "recovered"
        assert provider.cancelled_runs == []
        return _outputs(provider)[0]

    @pytest.mark.asyncio
    async def test_unknown_capability(self, make_provider):
        output = await self._run_single_call(
            make_provider(), ScriptedStep.calling("teleport", {}), []
        )
        assert output == {"error": "Tool teleport is not available."}

    @pytest.mark.asyncio
    async def test_malformed_arguments(self, make_provider):
        calls = []
        output = await self._run_single_call(
            make_provider(),
            ScriptedStep.calling("getTimeTool", "{not json"),
            [_clock_capability(calls)],
        )
        assert "not valid JSON" in output["error"]
        assert calls == []

    @pytest.mark.asyncio
    async def test_non_object_arguments(self, make_provider):
        calls = []
        output = await self._run_single_call(
            make_provider(),
            ScriptedStep.calling("getTimeTool", "[1, 2]"),
            [_clock_capability(calls)],
        )
        assert output == {"error": "Arguments for getTimeTool must be a JSON object."}
        assert calls == []

    @pytest.mark.asyncio
    async def test_capability_exception(self, make_provider):
        def explode():
            raise RuntimeError("disk on fire")

        output = await self._run_single_call(
            make_provider(),
            ScriptedStep.calling("explode", {}),
            [FunctionCapability("explode", explode)],
        )
        assert output == {"error": "disk on fire"}

    @pytest.mark.asyncio
    async def test_missing_required_parameter(self, make_provider):
        capability = FunctionCapability(
            "greet",
            lambda who: f"hello {who}",
            parameters={"who": Parameter("who", required=True)},
        )
        output = await self._run_single_call(
            make_provider(), ScriptedStep.calling("greet", {}), [capability]
        )
        assert "requires parameter 'who'" in output["error"]

    @pytest.mark.asyncio
    async def test_unsupported_call_type(self, make_provider):
        step = ScriptedStep.calling("getTimeTool", {})
        step.tool_calls[0].type = "code_interpreter"
        calls = []
        output = await self._run_single_call(make_provider(), step, [_clock_capability(calls)])
        assert output == {"error": "Tool call type code_interpreter is not supported."}
        assert calls == []


# ---------------------------------------------------------------------------
# Terminal failures cancel the run and propagate
# ---------------------------------------------------------------------------


class TestRunFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["failed", "cancelled", "expired"])
    async def test_failed_statuses_raise_and_cancel(self, make_provider, status):
        provider = make_provider()
        provider.queue(ScriptedRun.failing(status, "server_error: boom"))
        assistant_id, thread_id = await _conversation(provider)

        with pytest.raises(RunFailedError) as exc_info:
            await provider.send_thread_message(assistant_id, thread_id, "hi", [])

        assert exc_info.value.status == status
        assert "server_error: boom" in str(exc_info.value)
        assert provider.cancelled_runs == [exc_info.value.run_id]

    @pytest.mark.asyncio
    async def test_cancel_failure_does_not_mask_run_failure(self, make_provider, events):
        provider = make_provider(events=events, fail_operations={"cancel_run"})
        provider.queue(ScriptedRun.failing())
        assistant_id, thread_id = await _conversation(provider)

        with pytest.raises(RunFailedError):
            await provider.send_thread_message(assistant_id, thread_id, "hi", [])

        problems = [e.message for e in events.history if e.type == EventType.PROBLEM.value]
        assert any("Unable to cancel" in message for message in problems)

    @pytest.mark.asyncio
    async def test_unsupported_required_action(self, make_provider):
        provider = make_provider()
        provider.queue(
            ScriptedRun(steps=[ScriptedStep(status="requires_action", required_action="approve")])
        )
        assistant_id, thread_id = await _conversation(provider)

        with pytest.raises(UnsupportedActionError) as exc_info:
            await provider.send_thread_message(assistant_id, thread_id, "hi", [])

        assert exc_info.value.action == "approve"
        assert len(provider.cancelled_runs) == 1
        assert provider.submitted == []

    @pytest.mark.asyncio
    async def test_run_timeout(self, make_provider):
        provider = make_provider(config=AgencyConfig(run_timeout=1.0))
        provider.queue(ScriptedRun(steps=["in_progress"]))
        assistant_id, thread_id = await _conversation(provider)

        with pytest.raises(RunTimeoutError):
            await provider.send_thread_message(assistant_id, thread_id, "hi", [])

        run_id = next(iter(provider.runs))
        assert provider.polls(run_id) == 3
        assert provider.cancelled_runs == [run_id]

    @pytest.mark.asyncio
    async def test_cancellation_token_stops_polling(self, make_provider):
        token = CancellationToken()

        def stop():
            token.cancel("user pressed stop")
            return "stopping"

        capability = FunctionCapability("stop", stop)
        provider = make_provider()
        provider.queue(
            ScriptedRun(steps=[ScriptedStep.calling("stop"), "in_progress", "completed"])
        )
        assistant_id, thread_id = await _conversation(provider, [capability])

        with pytest.raises(RunCancelledError, match="user pressed stop"):
            await provider.send_thread_message(
                assistant_id, thread_id, "hi", [capability], cancel=token
            )

        run_id = next(iter(provider.runs))
        assert provider.polls(run_id) == 1
        assert provider.cancelled_runs == [run_id]

    @pytest.mark.asyncio
    async def test_task_cancellation_cancels_remote_run(self, make_provider):
        provider = make_provider()
        provider.queue(ScriptedRun(steps=["in_progress"]))
        assistant_id, thread_id = await _conversation(provider)

        task = asyncio.create_task(provider.send_thread_message(assistant_id, thread_id, "hi", []))
        for _ in range(5):
            await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(provider.cancelled_runs) == 1


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------


class TestProviderCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_deletes_everything(self, make_provider):
        provider = make_provider()
        assistant_id, thread_id = await _conversation(provider)
        provider.assistant_files[assistant_id] = ["file_a", "file_b"]

        await provider.cleanup()

        assert provider.deleted == [thread_id, "file_a", "file_b", assistant_id]
        assert provider.assistants == {}
        assert provider.threads == {}

    @pytest.mark.asyncio
    async def test_cleanup_continues_after_failures(self, make_provider, events):
        provider = make_provider(events=events, fail_operations={"delete_thread", "delete_file"})
        assistant_id, _ = await _conversation(provider)
        provider.assistant_files[assistant_id] = ["file_a", "file_b"]

        await provider.cleanup()

        assert provider.deleted == [assistant_id]
        assert ("delete_file", "file_b") in provider.calls
        problems = [e for e in events.history if e.type == EventType.PROBLEM.value]
        assert len(problems) == 3
        assert provider.assistants == {}
        assert provider.threads == {}

    @pytest.mark.asyncio
    async def test_cleanup_when_files_cannot_be_listed(self, make_provider):
        provider = make_provider(fail_operations={"list_assistant_files"})
        assistant_id, thread_id = await _conversation(provider)

        await provider.cleanup()

        assert provider.deleted == [thread_id, assistant_id]

    @pytest.mark.asyncio
    async def test_assistant_advertises_capability_schemas(self, make_provider):
        provider = make_provider()
        assistant_id, _ = await _conversation(provider, [_clock_capability([])])

        tools = provider.created_assistants[assistant_id]["tools"]
        assert tools == [
            {
                "name": "getTimeTool",
                "description": "Returns the time.",
                "parameters": {
                    "type": "object",
                    "properties": {"timezone": {"type": "string"}},
                    "required": [],
                },
            }
        ]
