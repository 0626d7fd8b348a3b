"""Tests for outbound channel adapters and the web outbox."""
import json

import httpx
import pytest

from bizagent.services.channels import ChannelError, TelegramChannel, WebChannel, WebOutbox


class TestWebOutbox:

    def test_replies_queue_per_actor(self):
        outbox = WebOutbox()
        channel = WebChannel(outbox)

        channel.send("web-1", "first")
        channel.send("web-1", "second")
        channel.send("web-2", "other")

        assert [m["text"] for m in outbox.messages("web-1")] == ["first", "second"]
        assert outbox.messages("nobody") == []

    def test_each_queue_is_capped(self):
        outbox = WebOutbox(maxlen=2)
        for i in range(5):
            outbox.push("web-1", f"m{i}")

        assert [m["text"] for m in outbox.messages("web-1")] == ["m3", "m4"]

    def test_least_recently_active_actor_is_dropped(self):
        outbox = WebOutbox(max_actors=2)
        outbox.push("a", "1")
        outbox.push("b", "1")
        outbox.push("a", "2")
        outbox.push("c", "1")

        assert outbox.messages("b") == []
        assert [m["text"] for m in outbox.messages("a")] == ["1", "2"]
        assert len(outbox.messages("c")) == 1


class TestTelegramChannel:

    def test_posts_send_message(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})

        channel = TelegramChannel("bot-token", client=httpx.Client(transport=httpx.MockTransport(handler)))

        assert channel.send("42", "hi")["provider"] == "telegram"
        assert seen["url"].endswith("/botbot-token/sendMessage")
        assert seen["body"] == {"chat_id": "42", "text": "hi"}

    def test_http_failure_raises_channel_error(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(502)))

        with pytest.raises(ChannelError):
            TelegramChannel("bot-token", client=client).send("42", "hi")

    def test_unconfigured_is_stub(self):
        assert TelegramChannel("").send("42", "hi")["provider"] == "stub"
