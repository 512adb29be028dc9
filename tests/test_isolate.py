"""Tests for the execution isolate and its message channel."""

import io
import json
import logging
from datetime import UTC, datetime

import pytest

from cody_routines.config import RoutinesSettings, load_routine_file
from cody_routines.config.models import NewSessionAction, NotifyConfig
from cody_routines.scheduling.isolate import (
    ChannelLogHandler,
    Done,
    Error,
    ExecutionRequest,
    Log,
    StreamChannel,
    decode_message,
    encode_message,
    perform_action,
    render_new_session,
    run_isolate,
)
from tests.conftest import DAILY_DIGEST


def make_request(**action_fields) -> ExecutionRequest:
    action_fields.setdefault("message", "Hello {{weekday}}")
    return ExecutionRequest(
        routine_id="digest",
        name="Daily digest",
        action=NewSessionAction(**action_fields),
        timezone="UTC",
        server_url="http://opencode.test",
        generation=3,
    )


async def collect(request, **kwargs) -> list:
    messages: list = []
    await run_isolate(request, messages.append, **kwargs)
    return messages


class TestMessageCodec:
    """Tests for the JSON-lines message encoding."""

    def test_encodes_each_variant(self):
        assert json.loads(encode_message(Log("hi"))) == {"type": "log", "text": "hi"}
        assert json.loads(encode_message(Error("bad"))) == {
            "type": "error",
            "text": "bad",
        }
        assert json.loads(encode_message(Done())) == {"type": "done"}

    def test_decode_inverts_encode(self):
        for message in (Log("a\nb"), Error("x"), Done()):
            assert decode_message(encode_message(message)) == message

    @pytest.mark.parametrize("line", ['{"type": "progress"}', "[1, 2]", "plain text"])
    def test_decode_rejects_unknown(self, line):
        with pytest.raises(ValueError):
            decode_message(line)

    def test_stream_channel_writes_lines(self):
        stream = io.StringIO()
        channel = StreamChannel(stream)

        channel.send(Log("one"))
        channel.send(Done())

        assert stream.getvalue().splitlines() == [
            '{"type": "log", "text": "one"}',
            '{"type": "done"}',
        ]


class TestChannelLogHandler:
    """Tests for forwarding log records over the channel."""

    def test_levels_map_to_messages(self):
        messages: list = []
        logger = logging.getLogger("tests.isolate.channel")
        logger.propagate = False
        handler = ChannelLogHandler(messages.append)
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        try:
            logger.debug("hidden")
            logger.info("session_created", extra={"session.id": "ses_1"})
            logger.error("notification_relay_failed")
        finally:
            logger.removeHandler(handler)

        assert messages == [
            Log("session_created session.id=ses_1"),
            Error("notification_relay_failed"),
        ]


class TestExecutionRequest:
    """Tests for the request snapshot."""

    def test_for_routine(self, write_routine):
        routine = load_routine_file(write_routine("daily-digest.yaml", DAILY_DIGEST))
        settings = RoutinesSettings(server_url="http://remote:1", relay_command="r")

        request = ExecutionRequest.for_routine(routine, settings, generation=2)

        assert request.routine_id == "daily-digest"
        assert request.name == "Daily digest"
        assert request.timezone == "UTC"
        assert request.server_url == "http://remote:1"
        assert request.relay_command == "r"
        assert request.generation == 2
        assert request.action is routine.config.action

    def test_json_round_trip(self):
        request = make_request(
            title="T",
            model="a/b",
            notify=NotifyConfig(title="n", body="b", deeplink="app://x"),
        )
        assert ExecutionRequest.from_json(request.to_json()) == request


class TestRenderNewSession:
    def test_substitutes_title_and_message(self):
        action = NewSessionAction(title="Digest {{date}}", message="Week {{week}}")
        now = datetime.now(UTC)

        title, message = render_new_session(action, "UTC")

        assert title == f"Digest {now:%Y-%m-%d}"
        assert message == f"Week {now.isocalendar().week:02d}"

    def test_missing_title_stays_none(self):
        title, _ = render_new_session(NewSessionAction(message="hi"), None)
        assert title is None


class TestRunIsolate:
    """Tests for one firing end to end."""

    @pytest.mark.asyncio
    async def test_daily_digest_creates_then_sends(
        self, write_routine, opencode_server, notifier
    ):
        routine = load_routine_file(write_routine("daily-digest.yaml", DAILY_DIGEST))
        request = ExecutionRequest.for_routine(
            routine, RoutinesSettings(server_url="http://opencode.test")
        )
        now = datetime.now(UTC)

        messages = await collect(
            request,
            client_factory=opencode_server.client_factory,
            notifier=notifier,
        )

        create, send = opencode_server.requests
        assert create.url.path == "/session"
        assert send.url.path == "/session/ses_123/prompt_async"
        text = json.loads(send.content)["parts"][0]["text"]
        assert text == f"Today is {now:%A}, {now:%Y-%m-%d}."

        assert messages[0] == Log("Executing routine: Daily digest")
        assert Log("Routine Daily digest completed successfully") in messages
        assert messages[-1] == Done()
        assert messages.count(Done()) == 1
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_remote_failure_still_ends_with_done(self, opencode_server, notifier):
        opencode_server.fail_status = 500

        messages = await collect(
            make_request(),
            client_factory=opencode_server.client_factory,
            notifier=notifier,
        )

        errors = [m for m in messages if isinstance(m, Error)]
        assert len(errors) == 1
        assert errors[0].text.startswith("Routine Daily digest failed:")
        assert "500" in errors[0].text
        assert messages[-1] == Done()
        assert messages.count(Done()) == 1

    @pytest.mark.asyncio
    async def test_unreachable_server_still_ends_with_done(self):
        from cody_routines.client import OpenCodeClient

        def factory(request):
            # Nothing listens on port 9 (discard) in test environments
            return OpenCodeClient("http://127.0.0.1:9", timeout=1.0)

        messages = await collect(make_request(), client_factory=factory)

        assert isinstance(messages[-2], Error)
        assert messages[-1] == Done()

    @pytest.mark.asyncio
    async def test_notification_uses_extended_context(self, opencode_server, notifier):
        request = make_request(
            notify=NotifyConfig(
                title="{{routine_name}} ready",
                body="Session {{session_id}} on {{date}} {{unknown}}",
                deeplink="opencode://session/{{session_id}}",
            )
        )
        today = datetime.now(UTC).strftime("%Y-%m-%d")

        messages = await collect(
            request,
            client_factory=opencode_server.client_factory,
            notifier=notifier,
        )

        assert notifier.calls == [
            (
                "Daily digest ready",
                f"Session ses_123 on {today} {{{{unknown}}}}",
                "opencode://session/ses_123",
            )
        ]
        assert not any(isinstance(m, Error) for m in messages)
        assert messages[-1] == Done()

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_routine(
        self, opencode_server, notifier
    ):
        notifier.result = False
        request = make_request(notify=NotifyConfig(title="t", body="b"))

        messages = await collect(
            request,
            client_factory=opencode_server.client_factory,
            notifier=notifier,
        )

        assert Error("Routine Daily digest: notification failed") in messages
        assert Log("Routine Daily digest completed successfully") in messages
        assert messages[-1] == Done()

    @pytest.mark.asyncio
    async def test_invalid_timezone_reported(self, opencode_server, notifier):
        request = ExecutionRequest(
            routine_id="x",
            name="X",
            action=NewSessionAction(message="hi"),
            timezone="Nope/Nowhere",
        )

        messages = await collect(
            request,
            client_factory=opencode_server.client_factory,
            notifier=notifier,
        )

        assert Error("Routine X failed: Unknown timezone: Nope/Nowhere") in messages
        assert opencode_server.requests == []
        assert messages[-1] == Done()


class TestPerformAction:
    @pytest.mark.asyncio
    async def test_raises_remote_errors(self, opencode_server, notifier):
        from cody_routines.errors import RemoteAPIError

        opencode_server.fail_status = 502

        async with opencode_server.client() as client:
            with pytest.raises(RemoteAPIError):
                await perform_action(make_request(), client, notifier)

    @pytest.mark.asyncio
    async def test_returns_outcome(self, opencode_server, notifier):
        request = make_request(notify=NotifyConfig(title="t", body="b"))

        async with opencode_server.client() as client:
            outcome = await perform_action(request, client, notifier)

        assert outcome.session_id == "ses_123"
        assert outcome.notified is True
