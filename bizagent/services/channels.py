"""
Outbound messaging channel adapters.

Each adapter exposes send(actor_id, text). Telegram and WhatsApp post to their
HTTP APIs; when their credentials are not configured they log the message
instead (stub mode). The web adapter queues replies for the web form to poll.
"""
import logging
import threading
from collections import OrderedDict, deque
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

import httpx

from bizagent.config import Settings
from bizagent.models.enums import Channel

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
WHATSAPP_API_URL = "https://graph.facebook.com/v18.0/{phone_number_id}/messages"


class ChannelError(Exception):
    """Delivery through a channel failed."""
    pass


class TelegramChannel:
    name = Channel.TELEGRAM

    def __init__(self, bot_token: str, client: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.bot_token = bot_token
        self.client = client or httpx.Client(timeout=timeout)

    def send(self, actor_id: str, text: str) -> Dict[str, Any]:
        if not self.bot_token:
            logger.info("Telegram not configured; message to %s not sent", actor_id)
            return {"provider": "stub", "channel": self.name.value}

        try:
            r = self.client.post(
                TELEGRAM_API_URL.format(token=self.bot_token),
                json={"chat_id": actor_id, "text": text},
            )
            r.raise_for_status()
        except httpx.HTTPError as exc:
            raise ChannelError(f"Telegram send failed: {type(exc).__name__}") from exc
        return {"provider": "telegram", "channel": self.name.value}


class WhatsAppChannel:
    name = Channel.WHATSAPP

    def __init__(
        self,
        api_key: str,
        phone_number_id: str,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0
    ):
        self.api_key = api_key
        self.phone_number_id = phone_number_id
        self.client = client or httpx.Client(timeout=timeout)

    def send(self, actor_id: str, text: str) -> Dict[str, Any]:
        if not (self.api_key and self.phone_number_id):
            logger.info("WhatsApp not configured; message to %s not sent", actor_id)
            return {"provider": "stub", "channel": self.name.value}

        payload = {
            "messaging_product": "whatsapp",
            "to": actor_id,
            "type": "text",
            "text": {"body": text},
        }
        try:
            r = self.client.post(
                WHATSAPP_API_URL.format(phone_number_id=self.phone_number_id),
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                json=payload,
            )
            r.raise_for_status()
        except httpx.HTTPError as exc:
            raise ChannelError(f"WhatsApp send failed: {type(exc).__name__}") from exc
        return {"provider": "whatsapp", "channel": self.name.value}


class WebOutbox:
    """
    Per-actor reply queue for the web form. Keeps the last `maxlen` replies
    for each of the `max_actors` most recently active actors.
    """

    def __init__(self, maxlen: int = 50, max_actors: int = 1000):
        self.maxlen = maxlen
        self.max_actors = max_actors
        self._queues: "OrderedDict[str, Deque[Dict[str, Any]]]" = OrderedDict()
        self._lock = threading.Lock()

    def push(self, actor_id: str, text: str) -> None:
        with self._lock:
            queue = self._queues.pop(actor_id, None)
            if queue is None:
                queue = deque(maxlen=self.maxlen)
            queue.append({"text": text, "sent_at": datetime.utcnow().isoformat()})
            self._queues[actor_id] = queue
            while len(self._queues) > self.max_actors:
                self._queues.popitem(last=False)

    def messages(self, actor_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._queues.get(actor_id, ()))

    def clear(self) -> None:
        with self._lock:
            self._queues.clear()


WEB_OUTBOX = WebOutbox()


class WebChannel:
    name = Channel.WEB

    def __init__(self, outbox: Optional[WebOutbox] = None):
        self.outbox = outbox or WEB_OUTBOX

    def send(self, actor_id: str, text: str) -> Dict[str, Any]:
        self.outbox.push(actor_id, text)
        return {"provider": "web", "channel": self.name.value}


def build_channels(settings: Settings) -> Dict[Channel, Any]:
    return {
        Channel.TELEGRAM: TelegramChannel(settings.telegram_bot_token),
        Channel.WHATSAPP: WhatsAppChannel(settings.whatsapp_api_key, settings.whatsapp_phone_number_id),
        Channel.WEB: WebChannel(),
    }
