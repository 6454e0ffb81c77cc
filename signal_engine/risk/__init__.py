"""Risk gate: exposure limits and daily loss cap."""

from signal_engine.risk.manager import RiskGate, RiskDecision, RiskCheck, ExposureSnapshot

__all__ = ["RiskGate", "RiskDecision", "RiskCheck", "ExposureSnapshot"]
