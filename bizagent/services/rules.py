"""
Business rule evaluator.

Maps a classified request to an approval requirement and an advisory risk
level. Pure and deterministic: no I/O, no clock, no database. Only the boolean
rule list decides whether a human must sign off; the risk level is used to
order the admin queue and nothing else.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from bizagent.config import RuleThresholds
from bizagent.models.enums import ActionKind, ProposedAction, RiskLevel


class Reason:
    """Reason codes attached to an evaluation."""
    HIGH_VALUE = "amount_over_high_value_threshold"
    REFUND_OVER_THRESHOLD = "refund_over_threshold"
    BULK_QUANTITY = "quantity_over_bulk_threshold"
    NEW_CUSTOMER_LARGE_AMOUNT = "new_customer_large_amount"
    INVOICE_OVER_THRESHOLD = "invoice_over_threshold"
    PAYMENT_REMINDER = "payment_reminder_requires_signoff"
    LARGE_INVENTORY_CHANGE = "inventory_change_over_threshold"
    DATA_EXPORT = "data_export_requires_signoff"
    LOW_CONFIDENCE = "low_classifier_confidence"


@dataclass(frozen=True)
class Evaluation:
    requires_approval: bool
    risk_level: RiskLevel
    reasons: List[str] = field(default_factory=list)
    proposed_action: ProposedAction = ProposedAction.GENERAL_QUERY
    risk_score: int = 0


def _number(value: Any) -> float:
    """Parse amounts like 6000, "6,000" or "₹6000"; anything else is 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = str(value).replace(",", "").replace("₹", "").strip()
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def _items(entities: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    items = entities.get("items") or []
    if not isinstance(items, (list, tuple)):
        return []
    return [i for i in items if isinstance(i, Mapping)]


def amount_of(entities: Mapping[str, Any]) -> float:
    return _number(entities.get("amount"))


def quantity_of(entities: Mapping[str, Any]) -> float:
    """Explicit `quantity`, else the sum of item quantities."""
    if entities.get("quantity") is not None:
        return _number(entities.get("quantity"))
    return sum(_number(i.get("quantity")) for i in _items(entities))


def order_count_of(entities: Mapping[str, Any]) -> int:
    # Unknown history is treated as a brand-new customer
    return int(_number(entities.get("customer_order_count")))


def is_urgent(entities: Mapping[str, Any]) -> bool:
    if entities.get("urgent") is True:
        return True
    return str(entities.get("urgency") or "").strip().lower() in {"high", "urgent"}


def risk_score(amount: float, customer_order_count: int, kind: ActionKind, urgent: bool) -> int:
    score = 0

    if amount > 10000:
        score += 3
    elif amount > 5000:
        score += 2
    elif amount > 1000:
        score += 1

    if customer_order_count < 3:
        score += 2
    elif customer_order_count < 10:
        score += 1

    if kind == ActionKind.REFUND:
        score += 2
    if urgent:
        score += 1

    return score


def risk_level(amount: float, customer_order_count: int, kind: ActionKind, urgent: bool) -> RiskLevel:
    score = risk_score(amount, customer_order_count, kind, urgent)
    if score >= 4:
        return RiskLevel.HIGH
    if score >= 2:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def approval_reasons(
    kind: ActionKind,
    entities: Mapping[str, Any],
    thresholds: RuleThresholds
) -> List[str]:
    """
    Every rule for the kind is checked; all that hold contribute a reason.
    """
    reasons: List[str] = []
    amount = amount_of(entities)

    if kind in (ActionKind.CREATE_ORDER, ActionKind.REFUND):
        if amount > thresholds.high_value:
            reasons.append(Reason.HIGH_VALUE)
        if kind == ActionKind.REFUND and amount > thresholds.refund:
            reasons.append(Reason.REFUND_OVER_THRESHOLD)
        if quantity_of(entities) > thresholds.bulk_order:
            reasons.append(Reason.BULK_QUANTITY)
        if (order_count_of(entities) < thresholds.new_customer
                and amount > thresholds.new_customer_amount):
            reasons.append(Reason.NEW_CUSTOMER_LARGE_AMOUNT)

    elif kind == ActionKind.GENERATE_INVOICE:
        if amount > thresholds.invoice:
            reasons.append(Reason.INVOICE_OVER_THRESHOLD)

    elif kind == ActionKind.SEND_PAYMENT_REMINDER:
        reasons.append(Reason.PAYMENT_REMINDER)

    elif kind == ActionKind.UPDATE_INVENTORY:
        if any(_number(i.get("quantity")) > thresholds.inventory_quantity for i in _items(entities)):
            reasons.append(Reason.LARGE_INVENTORY_CHANGE)

    elif kind == ActionKind.DATA_EXPORT:
        reasons.append(Reason.DATA_EXPORT)

    # follow_up and general_query never need approval on their own
    return reasons


def evaluate(request: Any, thresholds: Optional[RuleThresholds] = None) -> Evaluation:
    """
    Evaluate a request-like object exposing `kind`, `entities` and `confidence`.

    A confidence below the minimum forces approval and swaps the proposed
    action for a clarification request, whatever the kind.
    """
    thresholds = thresholds or RuleThresholds()
    kind = ActionKind(request.kind)
    entities: Dict[str, Any] = dict(request.entities or {})
    confidence = float(request.confidence)

    reasons = approval_reasons(kind, entities, thresholds)
    proposed_action = ProposedAction.for_kind(kind)

    if confidence < thresholds.min_confidence:
        reasons.append(Reason.LOW_CONFIDENCE)
        proposed_action = ProposedAction.REQUEST_CLARIFICATION

    amount = amount_of(entities)
    order_count = order_count_of(entities)
    urgent = is_urgent(entities)

    return Evaluation(
        requires_approval=bool(reasons),
        risk_level=risk_level(amount, order_count, kind, urgent),
        reasons=reasons,
        proposed_action=proposed_action,
        risk_score=risk_score(amount, order_count, kind, urgent),
    )


def describe(reasons: Iterable[str]) -> str:
    """Human-readable summary for the admin queue."""
    return ", ".join(r.replace("_", " ") for r in reasons) or "no approval needed"
