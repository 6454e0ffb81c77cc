"""
Optional AI confirmation. The decision service answers BUY / SELL / IGNORE;
IGNORE or a different direction rejects. Any failure of the service itself lets
the signal through (decision FALLBACK), unlike the global and local stages.
"""

from __future__ import annotations
import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import requests

from signal_engine.core.config import Config
from signal_engine.core.errors import DecisionError, DecisionTimeout
from signal_engine.core.types import FilterOutcome, Signal
from signal_engine.filters.base import FilterStage

logger = logging.getLogger("signal_engine.filters.ai")

SYSTEM_PROMPT = (
    "You are a crypto trading expert. Evaluate the trading signal against the technical "
    "analysis provided and answer BUY, SELL or IGNORE. Reply with JSON only: "
    '{"decision": "BUY|SELL|IGNORE", "confidence": 0-100, "reasoning": "short reason"}'
)

DECISIONS = ("BUY", "SELL", "IGNORE")


class DecisionClient(ABC):
    """External reasoning service."""

    @property
    def configured(self) -> bool:
        return True

    @abstractmethod
    def decide(self, context: dict) -> dict:
        """Return {decision, confidence, reasoning}. Raise DecisionError / DecisionTimeout on failure."""
        pass


def parse_decision(text: str) -> dict:
    """JSON answer, or a keyword scan of free text. Anything unclear becomes IGNORE."""
    try:
        data = json.loads(text)
    except ValueError:
        lower = text.lower()
        if "buy" in lower:
            return {"decision": "BUY", "confidence": 70, "reasoning": "BUY inferred from text response"}
        if "sell" in lower:
            return {"decision": "SELL", "confidence": 70, "reasoning": "SELL inferred from text response"}
        return {"decision": "IGNORE", "confidence": 50, "reasoning": "unclear response"}
    if not isinstance(data, dict):
        raise DecisionError(f"unexpected decision payload: {text[:100]}")
    decision = str(data.get("decision", "")).upper()
    if decision not in DECISIONS:
        raise DecisionError(f"unknown decision: {decision or text[:100]}")
    return {
        "decision": decision,
        "confidence": data.get("confidence"),
        "reasoning": data.get("reasoning", ""),
    }


class OpenAIDecisionClient(DecisionClient):
    """OpenAI-compatible chat completions endpoint over requests."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", base_url: str = "https://api.openai.com/v1", timeout: float = 10.0):
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def decide(self, context: dict) -> dict:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(context)},
            ],
            "max_tokens": 500,
            "temperature": 0.3,
        }
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        try:
            r = requests.post(f"{self.base_url}/chat/completions", json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise DecisionTimeout(f"decision service timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise DecisionError(f"decision service request failed: {e}") from e
        if r.status_code != 200:
            raise DecisionError(f"decision service HTTP {r.status_code}: {r.text[:200]}")
        try:
            content = r.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise DecisionError(f"malformed decision response: {e}") from e
        return parse_decision(content)


def build_context(signal: Signal, context: Dict[str, FilterOutcome]) -> dict:
    global_outcome = context.get("global")
    local_outcome = context.get("local")
    return {
        "signal": {
            "symbol": signal.symbol,
            "action": signal.action.value,
            "price": signal.price,
            "timeframe": signal.timeframe,
            "timestamp": signal.timestamp.isoformat(),
        },
        "global": global_outcome.details if global_outcome else {},
        "local": local_outcome.details if local_outcome else {},
    }


def build_prompt(context: dict) -> str:
    s = context["signal"]
    g = context.get("global") or {}
    lines = [
        "Crypto trading signal evaluation",
        f"Symbol: {s['symbol']}",
        f"Action: {s['action']}",
        f"Price: {s['price']}",
        f"Timeframe: {s['timeframe']}",
        f"Market trend: {g.get('market_trend')}",
        f"Reference trends: {g.get('trends')}",
    ]
    for name, check in (context.get("local") or {}).items():
        state = "passed" if check.get("passed") else "failed"
        lines.append(f"{name}: {check.get('value')} ({state})")
    lines.append("Evaluate the signal and answer in JSON.")
    return "\n".join(lines)


class AIFilter(FilterStage):

    name = "ai"
    label = "AI filter"

    def __init__(self, config: Config, client: Optional[DecisionClient] = None):
        super().__init__()
        self.config = config
        self.client = client
        self.ignored = 0

    def check(self, signal: Signal, context: Dict[str, FilterOutcome]) -> FilterOutcome:
        if not self.config.ai_enabled:
            return FilterOutcome(True, "AI disabled", {"decision": "DISABLED"})
        if self.client is None or not self.client.configured:
            logger.warning("No decision service API key, AI filter bypassed")
            return self._record(FilterOutcome(True, "AI bypassed: no API key", {"decision": "BYPASS"}))

        try:
            answer = self.client.decide(build_context(signal, context))
        except DecisionTimeout as e:
            logger.warning("AI decision timed out, approving by default: %s", e)
            return self._record(FilterOutcome(True, f"AI timeout, default approval: {e}", {"decision": "FALLBACK"}))
        except DecisionError as e:
            logger.error("AI decision failed, approving by default: %s", e)
            return self._record(FilterOutcome(True, f"AI error, default approval: {e}", {"decision": "FALLBACK"}))
        except Exception as e:
            logger.exception("AI filter unexpected error, approving by default")
            return self._record(FilterOutcome(True, f"AI error, default approval: {e}", {"decision": "FALLBACK"}))

        decision = answer["decision"]
        details = {"decision": decision, "confidence": answer.get("confidence"), "reasoning": answer.get("reasoning", "")}
        if decision == "IGNORE":
            self.ignored += 1
            outcome = FilterOutcome(False, f"AI IGNORE: {details['reasoning']}", details)
        elif decision == signal.action.value:
            outcome = FilterOutcome(True, f"AI approved: {details['reasoning']} (confidence {details['confidence']})", details)
        else:
            outcome = FilterOutcome(False, f"AI disagrees: signal {signal.action.value}, AI {decision}", details)
        logger.info("AI decision %s for %s %s", decision, signal.symbol, signal.action.value)
        return self._record(outcome)
