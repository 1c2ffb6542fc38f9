"""Tests for the service event forwarder."""

import pytest

from switchboard.application.event_forwarder import EventForwarder
from switchboard.core.domain.events import MessageReceived, StatusChanged
from switchboard.core.domain.models import BridgeStatus, Message


def incoming(text="hi there", *, from_me=False, image_path=None) -> Message:
    return Message(
        id="10",
        chat_id="42",
        sender="Bob Jones",
        from_me=from_me,
        text=text,
        timestamp=1700000000,
        image_path=image_path,
    )


@pytest.mark.asyncio
async def test_incoming_message_is_forwarded_with_notification(service, sink):
    forwarder = EventForwarder(service, sink)

    await forwarder.forward(MessageReceived(message=incoming(), sender_name="Bob Jones"))

    assert sink.types() == ["message.new", "notification"]
    message, notification = sink.envelopes
    assert message.id == ""
    assert message.data["text"] == "hi there"
    assert notification.id == ""
    assert notification.data == {"title": "Bob Jones", "body": "hi there", "service": "telegram"}


@pytest.mark.asyncio
async def test_own_message_has_no_notification(service, sink):
    forwarder = EventForwarder(service, sink)

    await forwarder.forward(MessageReceived(message=incoming(from_me=True), sender_name="Me"))

    assert sink.types() == ["message.new"]


@pytest.mark.asyncio
async def test_image_only_message_and_unknown_sender(service, sink):
    forwarder = EventForwarder(service, sink)

    await forwarder.forward(
        MessageReceived(message=incoming("", image_path="/media/photo_1.jpg"), sender_name="")
    )

    assert sink.find("notification").data == {
        "title": "Telegram",
        "body": "[image]",
        "service": "telegram",
    }


@pytest.mark.asyncio
async def test_status_change(service, sink):
    forwarder = EventForwarder(service, sink)

    await forwarder.forward(StatusChanged(status=BridgeStatus.DISCONNECTED))

    assert sink.envelopes[0].type == "status"
    assert sink.envelopes[0].data == {"status": "disconnected"}


@pytest.mark.asyncio
async def test_background_task_forwards_until_stopped(service, sink):
    forwarder = EventForwarder(service, sink)
    await forwarder.start()
    assert forwarder.running

    service.push_event(MessageReceived(message=incoming(), sender_name="Bob Jones"))
    await sink.wait_for(lambda: sink.find("notification"))

    await forwarder.stop()
    assert not forwarder.running
    service.push_event(StatusChanged(status=BridgeStatus.CONNECTED))
    assert sink.find("status") is None


class FlakySink:
    def __init__(self, inner) -> None:
        self.inner = inner
        self.failures = 1

    async def send(self, envelope) -> None:
        await self.inner.send(envelope)

    async def send_typed(self, msg_type, msg_id="", data=None) -> None:
        if self.failures:
            self.failures -= 1
            raise BrokenPipeError("stdout closed")
        await self.inner.send_typed(msg_type, msg_id, data)


@pytest.mark.asyncio
async def test_write_failure_does_not_stop_forwarding(service, sink):
    forwarder = EventForwarder(service, FlakySink(sink))
    await forwarder.start()

    service.push_event(StatusChanged(status=BridgeStatus.CONNECTED))
    service.push_event(StatusChanged(status=BridgeStatus.DISCONNECTED))
    await sink.wait_for(lambda: sink.find("status"))
    await forwarder.stop()

    assert [env.data for env in sink.of_type("status")] == [{"status": "disconnected"}]
