"""Quality gate: heuristic screening and judge escalation."""

from coursegen.ai.quality.gate import GateThresholds, QualityGate
from coursegen.ai.quality.judge import Judge, JudgeDecision, LlmJudge

__all__ = ["GateThresholds", "Judge", "JudgeDecision", "LlmJudge", "QualityGate"]
