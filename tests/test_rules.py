"""
Tests for the business rule evaluator.

The evaluator is pure: every test builds a request-like value and checks the
evaluation, nothing touches the database.
"""
from types import SimpleNamespace

import pytest

from bizagent.config import RuleThresholds
from bizagent.models.enums import ActionKind, ProposedAction, RiskLevel
from bizagent.services.rules import Reason, describe, evaluate, quantity_of, risk_level, risk_score


def req(kind, confidence=0.9, **entities):
    return SimpleNamespace(kind=kind, entities=entities, confidence=confidence)


class TestApprovalRules:
    """Each kind's approval rules, with all holding reasons collected."""

    def test_new_customer_large_order_needs_approval(self):
        """A ₹6,000 order from a customer with one previous order needs sign-off."""
        result = evaluate(req(ActionKind.CREATE_ORDER, amount=6000, customer_order_count=1))

        assert result.requires_approval is True
        assert result.reasons == [Reason.NEW_CUSTOMER_LARGE_AMOUNT]
        assert result.proposed_action == ProposedAction.CREATE_ORDER
        # 6000 -> +2, fewer than 3 orders -> +2
        assert result.risk_score == 4
        assert result.risk_level == RiskLevel.HIGH

    def test_small_refund_auto_executes(self):
        result = evaluate(req(ActionKind.REFUND, amount=800, customer_order_count=5))

        assert result.requires_approval is False
        assert result.reasons == []
        assert result.proposed_action == ProposedAction.REFUND

    def test_low_confidence_refund_forced_to_clarification(self):
        """The same small refund at confidence 0.4 must never auto-execute."""
        result = evaluate(req(ActionKind.REFUND, confidence=0.4, amount=800, customer_order_count=5))

        assert result.requires_approval is True
        assert Reason.LOW_CONFIDENCE in result.reasons
        assert result.proposed_action == ProposedAction.REQUEST_CLARIFICATION

    def test_payment_reminder_always_needs_approval(self):
        """Even a ₹50 reminder needs sign-off."""
        result = evaluate(req(ActionKind.SEND_PAYMENT_REMINDER, amount=50))

        assert result.requires_approval is True
        assert result.reasons == [Reason.PAYMENT_REMINDER]

    def test_data_export_always_needs_approval(self):
        result = evaluate(req(ActionKind.DATA_EXPORT))
        assert result.requires_approval is True
        assert result.reasons == [Reason.DATA_EXPORT]

    def test_large_refund_collects_every_reason(self):
        """Rules are not short-circuited."""
        result = evaluate(req(ActionKind.REFUND, amount=12000, customer_order_count=0))

        assert result.reasons == [
            Reason.HIGH_VALUE,
            Reason.REFUND_OVER_THRESHOLD,
            Reason.NEW_CUSTOMER_LARGE_AMOUNT,
        ]

    def test_bulk_quantity_sums_items(self):
        result = evaluate(req(
            ActionKind.CREATE_ORDER,
            customer_order_count=20,
            items=[{"name": "rice", "quantity": 30}, {"name": "sugar", "quantity": 25}]
        ))
        assert result.reasons == [Reason.BULK_QUANTITY]

    def test_explicit_quantity_wins_over_items(self):
        entities = {"quantity": 10, "items": [{"name": "rice", "quantity": 80}]}
        assert quantity_of(entities) == 10

    @pytest.mark.parametrize("amount,expected", [(1000, False), (1001, True)])
    def test_invoice_threshold(self, amount, expected):
        assert evaluate(req(ActionKind.GENERATE_INVOICE, amount=amount)).requires_approval is expected

    @pytest.mark.parametrize("quantity,expected", [(100, False), (101, True)])
    def test_inventory_item_threshold(self, quantity, expected):
        result = evaluate(req(ActionKind.UPDATE_INVENTORY, items=[{"name": "atta", "quantity": quantity}]))
        assert result.requires_approval is expected

    def test_follow_up_and_general_query_never_need_approval(self):
        for kind in (ActionKind.FOLLOW_UP, ActionKind.GENERAL_QUERY):
            result = evaluate(req(kind, amount=50000, customer_order_count=0, urgent=True))
            assert result.requires_approval is False


class TestBoundaries:
    """Thresholds are strict: equal to the threshold does not trigger."""

    def test_high_value_boundary(self):
        at = evaluate(req(ActionKind.CREATE_ORDER, amount=10000, customer_order_count=20))
        over = evaluate(req(ActionKind.CREATE_ORDER, amount=10001, customer_order_count=20))

        assert at.requires_approval is False
        assert over.requires_approval is True
        assert over.reasons == [Reason.HIGH_VALUE]

    def test_confidence_boundary(self):
        at = evaluate(req(ActionKind.FOLLOW_UP, confidence=0.6))
        under = evaluate(req(ActionKind.FOLLOW_UP, confidence=0.59))

        assert at.requires_approval is False
        assert at.proposed_action == ProposedAction.FOLLOW_UP
        assert under.requires_approval is True
        assert under.proposed_action == ProposedAction.REQUEST_CLARIFICATION

    def test_thresholds_are_configurable(self):
        strict = RuleThresholds(high_value=500)
        result = evaluate(req(ActionKind.CREATE_ORDER, amount=600, customer_order_count=20), strict)
        assert result.reasons == [Reason.HIGH_VALUE]


class TestRiskLevel:
    """Risk is advisory and deterministic."""

    def test_same_input_same_output(self):
        request = req(ActionKind.REFUND, amount=7000, customer_order_count=4, urgency="high")
        assert evaluate(request) == evaluate(request)

    def test_score_components(self):
        # 10001 -> +3, 5 orders -> +1, refund -> +2, urgent -> +1
        assert risk_score(10001, 5, ActionKind.REFUND, True) == 7
        assert risk_score(0, 10, ActionKind.FOLLOW_UP, False) == 0
        assert risk_score(1001, 10, ActionKind.CREATE_ORDER, False) == 1

    def test_level_cutoffs(self):
        assert risk_level(0, 10, ActionKind.CREATE_ORDER, False) == RiskLevel.LOW
        assert risk_level(1001, 10, ActionKind.CREATE_ORDER, True) == RiskLevel.MEDIUM
        assert risk_level(5001, 5, ActionKind.CREATE_ORDER, True) == RiskLevel.HIGH

    def test_risk_never_gates(self):
        """A high-risk follow-up still does not need approval."""
        result = evaluate(req(ActionKind.FOLLOW_UP, amount=20000, customer_order_count=0))
        assert result.risk_level == RiskLevel.HIGH
        assert result.requires_approval is False

    def test_missing_order_count_counts_as_new_customer(self):
        result = evaluate(req(ActionKind.CREATE_ORDER, amount=6000))
        assert Reason.NEW_CUSTOMER_LARGE_AMOUNT in result.reasons

    def test_amount_strings_are_parsed(self):
        result = evaluate(req(ActionKind.CREATE_ORDER, amount="₹6,000", customer_order_count=1))
        assert result.reasons == [Reason.NEW_CUSTOMER_LARGE_AMOUNT]

    def test_non_list_items_are_ignored(self):
        result = evaluate(req(ActionKind.UPDATE_INVENTORY, items=5, customer_order_count=4))
        assert result.requires_approval is False
        assert quantity_of({"items": "lots"}) == 0


def test_describe_reasons():
    assert describe([Reason.PAYMENT_REMINDER]) == "payment reminder requires signoff"
    assert describe([]) == "no approval needed"
