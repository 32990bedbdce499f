"""Configuration system for PingPay.

Loads service config from ``.ping-pay/config.yaml``, supports environment
variable expansion, and exposes the verification policy (retry bounds,
confirmation depth, amount tolerance) as typed settings rather than
literals scattered through the chain code.
"""

from __future__ import annotations

import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


def is_placeholder(value: str) -> bool:
    """True if *value* is empty or still an unexpanded ``${VAR}``."""
    return not value or bool(_ENV_VAR_RE.fullmatch(value.strip()))


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class NetworkConfig(BaseModel):
    """Which chain and token contract the service settles on.

    ``name`` selects an entry from :data:`ping_pay.chain.networks.NETWORKS`;
    any field set here overrides the built-in value.
    """

    name: str = "arbitrum-sepolia"
    rpc_url: Optional[str] = None        # ${RPC_URL}
    token_address: Optional[str] = None


class VerificationConfig(BaseModel):
    """Policy for confirming a client-submitted token transfer."""

    lookup_attempts: int = 10           # polls for the tx to become visible
    lookup_delay_seconds: float = 2.0
    lookup_backoff: float = 1.0         # 1.0 = fixed delay
    lookup_deadline_seconds: float = 60.0
    confirmations: int = 1              # blocks required on top of inclusion
    receipt_timeout_seconds: float = 120.0
    amount_tolerance: Decimal = Decimal("0.99")


class FeeConfig(BaseModel):
    """Gas assumptions for token transfers and the advisory fallback."""

    transfer_gas_limit: int = 100_000
    priority_fee_gwei: Decimal = Decimal("0.01")
    fallback_gas_price_gwei: Decimal = Decimal("0.1")
    fallback_estimated_cost: Decimal = Decimal("0.00001")


class TelegramConfig(BaseModel):
    """Chat bot used to notify recipients."""

    enabled: bool = False
    bot_token: str = ""                  # ${TELEGRAM_BOT_TOKEN}
    claim_base_url: str = "http://localhost:5173/receive"
    poll_timeout_seconds: int = 30


class InterpreterConfig(BaseModel):
    """Free-text command parsing. Regex matching is always available."""

    use_llm: bool = False
    api_key: str = ""                    # ${OPENAI_API_KEY}
    model: str = "gpt-3.5-turbo"
    base_url: Optional[str] = None       # For OpenAI-compatible endpoints


class ServerConfig(BaseModel):
    """HTTP API settings."""

    host: str = "127.0.0.1"
    port: int = 3001
    database: str = "ping_pay.db"


class PingPayConfig(BaseModel):
    """Root configuration object for the service."""

    network: NetworkConfig = Field(default_factory=NetworkConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    fees: FeeConfig = Field(default_factory=FeeConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    interpreter: InterpreterConfig = Field(default_factory=InterpreterConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_data_dir(base: Path | None = None, *, create: bool = True) -> Path:
    """Return the ``.ping-pay/`` directory holding config and database.

    Parameters
    ----------
    base:
        Parent directory that contains (or will contain) the data folder.
        Defaults to the current working directory.
    create:
        If *True* (default), create the directory if it doesn't exist.
    """
    if base is None:
        base = Path.cwd()
    data_dir = base / ".ping-pay"
    if create:
        data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def load_config(path: Path) -> PingPayConfig:
    """Load and validate a configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation.  A missing file yields the defaults.
    """
    if not path.exists():
        return PingPayConfig()
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return PingPayConfig.model_validate(expanded)


def save_config(config: PingPayConfig, path: Path) -> None:
    """Serialize a :class:`PingPayConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
