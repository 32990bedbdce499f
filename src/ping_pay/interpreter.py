"""Free-text send commands -> ``(amount, recipient)``.

A convenience layer only: its output is untrusted and goes through the
same amount and handle validation as any API input.  Regex matching is
always available; an OpenAI-compatible model can be layered on top and
falls back to the regex result on any failure.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Union

import openai

from ping_pay.amounts import parse_amount
from ping_pay.config import InterpreterConfig, is_placeholder
from ping_pay.errors import InvalidAmount, InvalidHandle
from ping_pay.storage.models import normalize_handle

logger = logging.getLogger("ping_pay.interpreter")

USAGE_HINT = 'Could not understand command. Try something like "send 10 usdc to @username"'

SYSTEM_PROMPT = """You are a payment command parser. Extract the amount (in USDC) and recipient Telegram handle from user messages.

Rules:
- Amount should be a number (can be decimal like 0.5, 1, 10, 100)
- Recipient is a Telegram handle (usually starts with @ but not always)
- If you can't find both amount AND recipient, return null for both
- Return ONLY valid JSON, no explanation

Examples:
"send 10 usdc to @alice" -> {"amount": "10", "recipient": "alice"}
"pay bob 50" -> {"amount": "50", "recipient": "bob"}
"@john needs 25 usdc" -> {"amount": "25", "recipient": "john"}
"transfer 100 to alice" -> {"amount": "100", "recipient": "alice"}
"give @mike 5 usdc please" -> {"amount": "5", "recipient": "mike"}
"I want to send some money to bob" -> {"amount": null, "recipient": null}
"hello" -> {"amount": null, "recipient": null}"""

_AMOUNT = r"(\d+(?:\.\d+)?)"
_UNIT = r"\s*(?:usdc|usd)?"

# (pattern, amount group, recipient group)
_PATTERNS: list[tuple[re.Pattern, int, int]] = [
    (re.compile(rf"(?:send|pay|transfer|give)\s+{_AMOUNT}{_UNIT}\s+to\s+@?(\w+)", re.I), 1, 2),
    (re.compile(rf"(?:send|pay|transfer|give)\s+@?(\w+)\s+{_AMOUNT}{_UNIT}", re.I), 2, 1),
    (re.compile(rf"@(\w+)\s+.*?{_AMOUNT}{_UNIT}", re.I), 2, 1),
    (re.compile(rf"{_AMOUNT}{_UNIT}\s+.*?@(\w+)", re.I), 1, 2),
]


@dataclass(frozen=True)
class ParsedCommand:
    amount: Decimal
    recipient: str


@dataclass(frozen=True)
class Unparsed:
    reason: str = USAGE_HINT


ParseResult = Union[ParsedCommand, Unparsed]


def _validated(amount: object, recipient: object) -> ParseResult:
    try:
        return ParsedCommand(amount=parse_amount(amount), recipient=normalize_handle(str(recipient)))
    except (InvalidAmount, InvalidHandle) as e:
        return Unparsed(e.detail)


class RegexInterpreter:
    """Deterministic pattern matching over a handful of phrasings."""

    async def parse(self, command: str) -> ParseResult:
        for pattern, amount_group, recipient_group in _PATTERNS:
            match = pattern.search(command or "")
            if match:
                return _validated(match.group(amount_group), match.group(recipient_group))
        return Unparsed()


class LLMInterpreter:
    """Asks a chat model to extract the command, falling back to regex."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        fallback: RegexInterpreter | None = None,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.fallback = fallback or RegexInterpreter()
        client_kwargs: dict = {"api_key": api_key}
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = client or openai.AsyncOpenAI(**client_kwargs)

    async def parse(self, command: str) -> ParseResult:
        regex_result = await self.fallback.parse(command)
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": command},
                ],
                temperature=0,
                max_tokens=100,
            )
            content = (response.choices[0].message.content or "").strip()
            logger.info(f"AI parsed {command!r} -> {content}")
            parsed = json.loads(content)
        except Exception as e:
            logger.error(f"AI parsing error: {e}")
            return regex_result

        if not isinstance(parsed, dict):
            return regex_result
        amount, recipient = parsed.get("amount"), parsed.get("recipient")
        if amount is None or not recipient:
            return regex_result
        result = _validated(str(amount), recipient)
        return result if isinstance(result, ParsedCommand) else regex_result


def build_interpreter(config: InterpreterConfig) -> RegexInterpreter | LLMInterpreter:
    """LLM-backed interpreter when enabled and keyed, otherwise regex only."""
    if config.use_llm and not is_placeholder(config.api_key):
        logger.info(f"Command interpreter using model {config.model}")
        return LLMInterpreter(config.api_key, config.model, base_url=config.base_url)
    logger.info("OpenAI API key not configured. AI parsing disabled, using regex fallback.")
    return RegexInterpreter()
