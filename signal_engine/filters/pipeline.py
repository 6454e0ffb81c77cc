"""
Signal approval pipeline: global -> local -> ai. Stops at the first rejection;
later stages are recorded as skipped. Always returns a ProcessResult.
"""

from __future__ import annotations
import logging
import time
from typing import Dict, List, Optional

from signal_engine.core.config import Config
from signal_engine.core.logger import trade_event
from signal_engine.core.types import FilterOutcome, ProcessResult, Signal
from signal_engine.data.base import MarketDataSource
from signal_engine.filters.ai_filter import AIFilter, DecisionClient, OpenAIDecisionClient
from signal_engine.filters.base import FilterStage
from signal_engine.filters.global_filter import GlobalFilter
from signal_engine.filters.local_filter import LocalFilter

logger = logging.getLogger("signal_engine.filters.pipeline")


class SignalFilterPipeline:

    def __init__(self, stages: List[FilterStage]):
        self.stages = list(stages)

    def process(self, signal: Signal) -> ProcessResult:
        start = time.perf_counter()
        results: Dict[str, FilterOutcome] = {}
        approved = False
        reason = ""
        logger.info("Processing signal: %s %s @ %s (%s)", signal.symbol, signal.action.value, signal.price, signal.timeframe)
        try:
            for stage in self.stages:
                if reason:
                    results[stage.name] = FilterOutcome.skip()
                    continue
                outcome = stage.check(signal, results)
                results[stage.name] = outcome
                if not outcome.passed:
                    reason = f"{stage.label}: {outcome.reason}"
            if not reason:
                approved = True
                reason = "all filters passed"
        except Exception as e:
            logger.exception("Signal processing error for %s", signal.symbol)
            approved = False
            reason = f"processing error: {e}"
            for stage in self.stages:
                results.setdefault(stage.name, FilterOutcome.skip())

        elapsed_ms = (time.perf_counter() - start) * 1000
        result = ProcessResult(
            signal=signal,
            approved=approved,
            reason=reason,
            filter_results=results,
            processing_time_ms=elapsed_ms,
        )
        if approved:
            logger.info("Signal approved: %s %s (%.1fms)", signal.symbol, signal.action.value, elapsed_ms)
            trade_event("signal_approved", symbol=signal.symbol, action=signal.action.value, price=signal.price)
        else:
            logger.info("Signal rejected: %s %s: %s", signal.symbol, signal.action.value, reason)
            trade_event("signal_rejected", symbol=signal.symbol, action=signal.action.value, reason=reason)
        return result

    def stats(self) -> Dict[str, dict]:
        return {stage.name: stage.stats.to_dict() for stage in self.stages}


def build_pipeline(
    config: Config,
    market_data: MarketDataSource,
    decision_client: Optional[DecisionClient] = None,
) -> SignalFilterPipeline:
    """Default stages: GlobalFilter, LocalFilter, AIFilter."""
    if decision_client is None:
        decision_client = OpenAIDecisionClient(
            api_key=config.openai_api_key,
            model=config.ai_model,
            base_url=config.ai_base_url,
            timeout=config.ai_timeout_seconds,
        )
    return SignalFilterPipeline([
        GlobalFilter(config, market_data),
        LocalFilter(config, market_data),
        AIFilter(config, decision_client),
    ])
