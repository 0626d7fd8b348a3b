"""
Normalization of channel webhook payloads into InboundMessage values.

Telegram rules: bot senders, non-text updates, empty or oversized texts and
texts with control characters are ignored.
"""
import re
from typing import Any, Dict, List, Optional, Tuple

from bizagent.models.enums import Channel
from bizagent.services.pipeline import InboundMessage

MAX_TEXT_LENGTH = 500

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def validate_text(text: Any) -> Optional[str]:
    """Return the reason a text is unacceptable, or None if it is fine."""
    if not isinstance(text, str):
        return "non_text"
    if not text.strip():
        return "empty_text"
    if len(text) > MAX_TEXT_LENGTH:
        return "text_too_long"
    if _CONTROL_CHARS.search(text):
        return "control_characters"
    return None


def normalize_telegram_update(update: Dict[str, Any]) -> Tuple[Optional[InboundMessage], Optional[str]]:
    """
    Returns (message, None) for a processable update, else (None, reason).
    """
    message = update.get("message") or update.get("edited_message")
    if not isinstance(message, dict):
        return None, "no_message"

    sender = message.get("from") or {}
    if sender.get("is_bot"):
        return None, "bot_sender"

    text = message.get("text")
    reason = validate_text(text)
    if reason:
        return None, reason

    chat_id = (message.get("chat") or {}).get("id") or sender.get("id")
    if chat_id is None:
        return None, "no_chat"

    return InboundMessage(
        actor_id=str(chat_id),
        text=text.strip(),
        channel=Channel.TELEGRAM,
        context={"customer_name": sender.get("first_name")},
    ), None


def normalize_whatsapp_payload(payload: Dict[str, Any]) -> List[InboundMessage]:
    """One InboundMessage per valid text message in a Graph API webhook."""
    inbound = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            names = {
                c.get("wa_id"): (c.get("profile") or {}).get("name")
                for c in value.get("contacts") or []
            }
            for message in value.get("messages") or []:
                if message.get("type") != "text":
                    continue
                text = (message.get("text") or {}).get("body")
                sender = message.get("from")
                if not sender or validate_text(text):
                    continue
                inbound.append(InboundMessage(
                    actor_id=str(sender),
                    text=text.strip(),
                    channel=Channel.WHATSAPP,
                    context={"customer_name": names.get(sender)},
                ))
    return inbound
