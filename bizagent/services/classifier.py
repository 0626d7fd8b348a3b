"""
Intent classifiers.

Every classifier exposes classify(text, context, history) -> Classification.
The LLM classifier raises ClassificationError/ClassificationTimeout; the
pipeline only ever talks to a ResilientClassifier, which turns those into the
deterministic fallback classification.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Sequence, Tuple

import httpx

from bizagent.config import Settings
from bizagent.models.enums import ActionKind
from bizagent.services.errors import ClassificationError, ClassificationTimeout

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.3


@dataclass
class Classification:
    intent: ActionKind
    entities: Dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    reply: Optional[str] = None
    fallback: bool = False
    fallback_reason: Optional[str] = None


def fallback_classification(reason: Optional[str] = None) -> Classification:
    """Safe answer when the intent cannot be determined: a general query that
    is answered with "let me check that" and never executes anything."""
    return Classification(
        intent=ActionKind.GENERAL_QUERY,
        entities={},
        confidence=FALLBACK_CONFIDENCE,
        fallback=True,
        fallback_reason=reason,
    )


# ----------------------------
# Keyword rule table
# ----------------------------

# First match wins, so more specific intents come first
INTENT_RULES: List[Tuple[ActionKind, Pattern, float]] = [
    (ActionKind.REFUND,
     re.compile(r"\b(refund|money back|paise wapas|return (my|the) (money|order)|wapas karo)\b"), 0.75),
    (ActionKind.DATA_EXPORT,
     re.compile(r"\b(export|download (my |all )?data|data (export|download)|send (me )?(my )?report)\b"), 0.75),
    (ActionKind.SEND_PAYMENT_REMINDER,
     re.compile(r"\b(remind(er)?|payment due|due payment|udhar|paise maang|yaad dilao|bhugtan)\b"), 0.75),
    (ActionKind.GENERATE_INVOICE,
     re.compile(r"\b(invoice|bill|receipt|chalan|challan)\b"), 0.75),
    (ActionKind.UPDATE_INVENTORY,
     re.compile(r"\b(stock|inventory|restock|maal add|maal ghatao)\b"), 0.75),
    (ActionKind.FOLLOW_UP,
     re.compile(r"\b(follow[\s-]?up|status|call karo|puch lo|baat karo)\b"), 0.75),
    (ActionKind.CREATE_ORDER,
     re.compile(r"\b(order|buy|purchase|chahiye|mangwa\w*|book)\b"), 0.75),
    (ActionKind.GENERAL_QUERY,
     re.compile(r"\b(hi|hello|hey|namaste|help|price|prices|kitna|rate|menu)\b"), 0.9),
]

UNITS = r"kg|kgs|kilo|kilos|g|gm|litre|litres|liter|liters|l|pcs|pieces|packets?|bags?|units?|boxes?|dozen"

_ITEM_QTY_FIRST = re.compile(rf"\b(\d+(?:\.\d+)?)\s*({UNITS})\s+(?:of\s+)?([a-z]+)\b")
_ITEM_NAME_FIRST = re.compile(rf"\b([a-z]+)\s+(\d+(?:\.\d+)?)\s*({UNITS})\b")
_AMOUNT_PREFIX = re.compile(r"(?:₹|\brs\.?|\binr|\brupees?)\s*(\d[\d,]*(?:\.\d+)?)")
_AMOUNT_SUFFIX = re.compile(r"\b(\d[\d,]*(?:\.\d+)?)\s*(?:rs\b|rupees?\b|rupey\b|inr\b|/-)")
_URGENT = re.compile(r"\b(urgent|urgently|asap|jaldi|turant|immediately)\b")
_ORDER_REF = re.compile(r"#([a-z0-9-]{4,})")

_NOT_ITEM_NAMES = {
    "to", "of", "the", "for", "me", "add", "set", "update", "stock", "order",
    "buy", "inventory", "karo", "and", "aur", "please",
}


def extract_entities(text: str) -> Dict[str, Any]:
    """Best-effort entity extraction for the keyword classifier."""
    lowered = (text or "").lower()
    entities: Dict[str, Any] = {}

    amount = _AMOUNT_PREFIX.search(lowered) or _AMOUNT_SUFFIX.search(lowered)
    if amount:
        entities["amount"] = float(amount.group(1).replace(",", ""))

    items = []
    for qty, unit, name in _ITEM_QTY_FIRST.findall(lowered):
        if name not in _NOT_ITEM_NAMES:
            items.append({"name": name, "quantity": float(qty), "unit": unit})
    if not items:
        for name, qty, unit in _ITEM_NAME_FIRST.findall(lowered):
            if name not in _NOT_ITEM_NAMES:
                items.append({"name": name, "quantity": float(qty), "unit": unit})
    if items:
        entities["items"] = items

    if _URGENT.search(lowered):
        entities["urgency"] = "high"

    order_ref = _ORDER_REF.search(lowered)
    if order_ref:
        entities["order_id"] = order_ref.group(1)

    return entities


class KeywordIntentClassifier:
    """Deterministic classifier over a keyword rule table. No network."""

    def __init__(self, rules: Optional[Sequence[Tuple[ActionKind, Pattern, float]]] = None):
        self.rules = list(rules or INTENT_RULES)

    def classify(
        self,
        text: str,
        context: Optional[Dict[str, Any]] = None,
        history: Optional[List[str]] = None
    ) -> Classification:
        lowered = (text or "").lower()
        for kind, pattern, confidence in self.rules:
            if pattern.search(lowered):
                return Classification(
                    intent=kind,
                    entities=extract_entities(text),
                    confidence=confidence,
                )
        return fallback_classification(reason="no_keyword_match")


# ----------------------------
# LLM classifier
# ----------------------------

CLASSIFIER_PROMPT = """You are a business assistant for an Indian small business.
Analyze the customer message and extract a structured intent.

MESSAGE: "{message}"
CUSTOMER: {customer}
HISTORY: {history}

Respond with ONLY a JSON object:
{{
  "intent": "create_order | generate_invoice | send_payment_reminder | update_inventory | refund | data_export | follow_up | general_query",
  "confidence": 0.0-1.0,
  "entities": {{
    "customer": "",
    "amount": 0,
    "items": [{{"name": "", "quantity": 0, "unit": ""}}],
    "order_id": "",
    "due_days": "",
    "urgency": "low | medium | high"
  }},
  "draft_message": ""
}}

RULES:
- Amounts are in INR unless stated otherwise
- Handle Hinglish: "bhej dena", "kal bhej do", "udhar likh lo"
- Be conservative with confidence
"""

# Intent names the model sometimes answers with
INTENT_ALIASES = {
    "create_invoice": ActionKind.GENERATE_INVOICE,
    "invoice": ActionKind.GENERATE_INVOICE,
    "payment_reminder": ActionKind.SEND_PAYMENT_REMINDER,
    "inventory": ActionKind.UPDATE_INVENTORY,
    "order": ActionKind.CREATE_ORDER,
    "export": ActionKind.DATA_EXPORT,
}

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def _checked_entities(raw: Any) -> Dict[str, Any]:
    """Entities must be an object, and `items` a list of objects."""
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ClassificationError("Classifier entities were not a JSON object.")
    items = raw.get("items")
    if items is not None and not (isinstance(items, list) and all(isinstance(i, dict) for i in items)):
        raise ClassificationError("Classifier entities.items was not a list of objects.")
    return raw


def parse_classification(content: str) -> Classification:
    """
    Parse the model's answer. Anything unusable raises ClassificationError so
    the caller can fall back.
    """
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise ClassificationError("Classifier answer contained no JSON object.")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ClassificationError(f"Classifier answer was not valid JSON: {exc.msg}")
    if not isinstance(parsed, dict):
        raise ClassificationError("Classifier answer was not a JSON object.")

    raw_intent = str(parsed.get("intent") or "").strip().lower()
    intent = INTENT_ALIASES.get(raw_intent)
    if intent is None:
        try:
            intent = ActionKind(raw_intent)
        except ValueError:
            raise ClassificationError(f"Unknown intent: {raw_intent or '(empty)'}")

    try:
        confidence = float(parsed.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0

    entities = _checked_entities(parsed.get("entities"))

    return Classification(
        intent=intent,
        entities=entities,
        confidence=min(1.0, max(0.0, confidence)),
        reply=parsed.get("draft_message") or None,
    )


class LLMIntentClassifier:
    """OpenAI-compatible chat completions classifier."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        api_url: str = "https://api.openai.com/v1/chat/completions",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None
    ):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.timeout = timeout
        self.client = client or httpx.Client(timeout=timeout)

    def classify(
        self,
        text: str,
        context: Optional[Dict[str, Any]] = None,
        history: Optional[List[str]] = None
    ) -> Classification:
        context = context or {}
        prompt = CLASSIFIER_PROMPT.format(
            message=text,
            customer=context.get("customer_name") or "Unknown",
            history=" | ".join((history or [])[-3:]),
        )
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = self.client.post(self.api_url, headers=headers, json=payload, timeout=self.timeout)
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
        except httpx.TimeoutException:
            raise ClassificationTimeout(f"Classifier did not answer within {self.timeout}s.")
        except httpx.HTTPStatusError as exc:
            raise ClassificationError(f"Classifier returned HTTP {exc.response.status_code}.")
        except httpx.HTTPError as exc:
            raise ClassificationError(f"Classifier request failed: {type(exc).__name__}")
        except (KeyError, IndexError, TypeError, ValueError):
            raise ClassificationError("Classifier response had an unexpected shape.")

        return parse_classification(content)


class ResilientClassifier:
    """Wraps a classifier; classification errors become the fallback."""

    def __init__(self, primary):
        self.primary = primary

    def classify(
        self,
        text: str,
        context: Optional[Dict[str, Any]] = None,
        history: Optional[List[str]] = None
    ) -> Classification:
        try:
            return self.primary.classify(text, context, history)
        except ClassificationError as exc:
            logger.warning("Classification failed (%s): %s", exc.code, exc.message)
            return fallback_classification(reason=exc.code)


def build_classifier(settings: Settings) -> ResilientClassifier:
    if settings.openai_api_key:
        logger.info("Using LLM intent classifier (%s)", settings.openai_model)
        primary = LLMIntentClassifier(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            api_url=settings.openai_api_url,
            timeout=settings.classifier_timeout_sec,
        )
    else:
        logger.info("OPENAI_API_KEY not set, using keyword intent classifier")
        primary = KeywordIntentClassifier()
    return ResilientClassifier(primary)
