"""Signal filter stages and the approval pipeline."""

from signal_engine.filters.base import FilterStage, FilterStats
from signal_engine.filters.global_filter import GlobalFilter, combine_trends
from signal_engine.filters.local_filter import LocalFilter
from signal_engine.filters.ai_filter import AIFilter, DecisionClient, OpenAIDecisionClient, parse_decision
from signal_engine.filters.pipeline import SignalFilterPipeline, build_pipeline

__all__ = [
    "FilterStage",
    "FilterStats",
    "GlobalFilter",
    "combine_trends",
    "LocalFilter",
    "AIFilter",
    "DecisionClient",
    "OpenAIDecisionClient",
    "parse_decision",
    "SignalFilterPipeline",
    "build_pipeline",
]
