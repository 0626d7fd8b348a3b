"""Tests for the keyword and LLM intent classifiers."""
import json

import httpx
import pytest

from bizagent.models.enums import ActionKind
from bizagent.services.classifier import (
    FALLBACK_CONFIDENCE,
    KeywordIntentClassifier,
    LLMIntentClassifier,
    ResilientClassifier,
    extract_entities,
    parse_classification
)
from bizagent.services.errors import ClassificationError, ClassificationTimeout


def completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def llm(handler, timeout=10.0):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return LLMIntentClassifier(api_key="sk-test", model="test-model", timeout=timeout, client=client)


class TestKeywordClassifier:

    @pytest.mark.parametrize("text,intent", [
        ("I want to order 50 kg rice", ActionKind.CREATE_ORDER),
        ("mujhe 10 kg atta chahiye", ActionKind.CREATE_ORDER),
        ("Please refund ₹800 for #ord1234", ActionKind.REFUND),
        ("Generate invoice for 2000 rupees", ActionKind.GENERATE_INVOICE),
        ("send payment reminder to Sharma", ActionKind.SEND_PAYMENT_REMINDER),
        ("update stock of sugar", ActionKind.UPDATE_INVENTORY),
        ("export my data", ActionKind.DATA_EXPORT),
        ("what is the status of my order", ActionKind.FOLLOW_UP),
        ("Namaste", ActionKind.GENERAL_QUERY),
    ])
    def test_intents(self, text, intent):
        result = KeywordIntentClassifier().classify(text)
        assert result.intent == intent
        assert result.fallback is False

    def test_no_match_is_fallback(self):
        result = KeywordIntentClassifier().classify("qwerty zxcvb")

        assert result.fallback is True
        assert result.intent == ActionKind.GENERAL_QUERY
        assert result.confidence == FALLBACK_CONFIDENCE

    def test_greeting_confidence_is_high(self):
        assert KeywordIntentClassifier().classify("hello").confidence == 0.9


class TestEntityExtraction:

    def test_items_and_units(self):
        entities = extract_entities("order 50 kg rice and 2 litres oil")
        assert entities["items"] == [
            {"name": "rice", "quantity": 50.0, "unit": "kg"},
            {"name": "oil", "quantity": 2.0, "unit": "litres"},
        ]

    def test_amounts(self):
        assert extract_entities("refund ₹800")["amount"] == 800.0
        assert extract_entities("bill for Rs. 6,000")["amount"] == 6000.0
        assert extract_entities("invoice 2000 rupees")["amount"] == 2000.0

    def test_urgency_and_order_reference(self):
        entities = extract_entities("urgent refund for #ord1234")
        assert entities["urgency"] == "high"
        assert entities["order_id"] == "ord1234"


class TestLLMClassifier:

    def test_parses_json_inside_prose(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return completion('Sure! {"intent": "create_invoice", "confidence": 0.8, "entities": {"amount": 1500}}')

        result = llm(handler).classify("bill banao 1500", {"customer_name": "Ravi"}, ["hi"])

        assert result.intent == ActionKind.GENERATE_INVOICE
        assert result.confidence == 0.8
        assert result.entities == {"amount": 1500}
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "test-model"
        assert "Ravi" in seen["body"]["messages"][0]["content"]

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ClassificationTimeout):
            llm(handler).classify("anything")

    def test_http_error(self):
        with pytest.raises(ClassificationError) as exc_info:
            llm(lambda request: httpx.Response(500, json={})).classify("anything")
        assert "500" in exc_info.value.message

    def test_malformed_json(self):
        with pytest.raises(ClassificationError):
            llm(lambda request: completion("I am not sure what you mean")).classify("anything")

    def test_unknown_intent(self):
        with pytest.raises(ClassificationError):
            parse_classification('{"intent": "dance", "confidence": 0.9}')

    def test_confidence_is_clamped(self):
        assert parse_classification('{"intent": "refund", "confidence": 1.7}').confidence == 1.0
        assert parse_classification('{"intent": "refund"}').confidence == 0.0

    @pytest.mark.parametrize("entities", [
        '{"items": 5}',
        '{"items": ["rice"]}',
        '"rice"',
    ])
    def test_malformed_entities_rejected(self, entities):
        with pytest.raises(ClassificationError):
            parse_classification('{"intent": "create_order", "confidence": 0.9, "entities": ' + entities + "}")


class TestResilientClassifier:

    def test_timeout_becomes_fallback(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        result = ResilientClassifier(llm(handler)).classify("anything")

        assert result.fallback is True
        assert result.fallback_reason == "classification_timeout"
        assert result.confidence == FALLBACK_CONFIDENCE

    def test_malformed_answer_becomes_fallback(self):
        result = ResilientClassifier(llm(lambda request: completion("{not json"))).classify("anything")

        assert result.fallback is True
        assert result.fallback_reason == "classification_error"

    def test_success_passes_through(self):
        result = ResilientClassifier(KeywordIntentClassifier()).classify("refund ₹500")
        assert result.intent == ActionKind.REFUND
        assert result.entities["amount"] == 500.0

    def test_malformed_entities_become_fallback(self):
        answer = '{"intent": "create_order", "confidence": 0.9, "entities": {"items": 5}}'

        result = ResilientClassifier(llm(lambda request: completion(answer))).classify("order stuff")

        assert result.fallback is True
        assert result.fallback_reason == "classification_error"
        assert result.confidence == FALLBACK_CONFIDENCE
