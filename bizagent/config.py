"""Runtime configuration loaded from the environment and an optional policy file."""
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

# Load variables from .env into the process environment
load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class RuleThresholds:
    """Business rule thresholds. Amounts are in INR."""
    high_value: float = 10000
    refund: float = 1000
    bulk_order: int = 50
    new_customer: int = 3
    new_customer_amount: float = 5000
    invoice: float = 1000
    inventory_quantity: int = 100
    min_confidence: float = 0.6


# Environment variable overriding each threshold field
THRESHOLD_ENV = {
    "high_value": "HIGH_VALUE_THRESHOLD",
    "refund": "REFUND_THRESHOLD",
    "bulk_order": "BULK_ORDER_THRESHOLD",
    "new_customer": "NEW_CUSTOMER_THRESHOLD",
    "new_customer_amount": "NEW_CUSTOMER_AMOUNT_THRESHOLD",
    "invoice": "INVOICE_THRESHOLD",
    "inventory_quantity": "INVENTORY_QUANTITY_THRESHOLD",
    "min_confidence": "MIN_CONFIDENCE",
}


def load_policy(path: str) -> Dict[str, Any]:
    """Read the YAML policy file. A missing file means "use defaults"."""
    if not path or not os.path.exists(path):
        return {}

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Policy file must contain a mapping: {path}")
    return data


def load_thresholds(policy_path: Optional[str] = None) -> RuleThresholds:
    """
    Build thresholds from defaults, then the policy file's `thresholds:` block,
    then per-key environment overrides.
    """
    policy = load_policy(policy_path or os.getenv("POLICY_PATH", "policy.yaml"))
    from_policy = policy.get("thresholds") or {}

    values: Dict[str, Any] = {}
    for f in fields(RuleThresholds):
        value = from_policy.get(f.name, f.default)
        env_name = THRESHOLD_ENV[f.name]
        if f.type in (int, "int"):
            value = env_int(env_name, int(value))
        else:
            value = env_float(env_name, float(value))
        values[f.name] = value
    return RuleThresholds(**values)


@dataclass
class Settings:
    database_url: str = "sqlite:///./bizagent.db"
    admin_token: str = ""
    log_level: str = "INFO"
    sql_echo: bool = False

    # Intent classifier (OpenAI-compatible chat completions)
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_api_url: str = "https://api.openai.com/v1/chat/completions"
    classifier_timeout_sec: float = 10.0

    # Notification delivery
    notify_max_attempts: int = 3
    notify_backoff_sec: float = 0.5

    # Executions claimed longer ago than this are considered abandoned
    execution_stale_sec: float = 300.0

    # Channels
    telegram_bot_token: str = ""
    whatsapp_api_key: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_verify_token: str = ""

    thresholds: RuleThresholds = field(default_factory=RuleThresholds)


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./bizagent.db"),
        admin_token=os.getenv("ADMIN_TOKEN", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        sql_echo=env_bool("SQL_ECHO"),
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        openai_api_url=os.getenv("OPENAI_API_URL", "https://api.openai.com/v1/chat/completions"),
        classifier_timeout_sec=env_float("CLASSIFIER_TIMEOUT_SEC", 10.0),
        notify_max_attempts=env_int("NOTIFY_MAX_ATTEMPTS", 3),
        notify_backoff_sec=env_float("NOTIFY_BACKOFF_SEC", 0.5),
        execution_stale_sec=env_float("EXECUTION_STALE_SEC", 300.0),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
        whatsapp_api_key=os.getenv("WHATSAPP_API_KEY", "").strip(),
        whatsapp_phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID", "").strip(),
        whatsapp_verify_token=os.getenv("WHATSAPP_VERIFY_TOKEN", "").strip(),
        thresholds=load_thresholds(),
    )


settings = load_settings()
