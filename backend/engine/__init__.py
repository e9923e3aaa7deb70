from engine.context import EvaluationContext, build_context
from engine.day_boundary import DayBoundary, date_key, next_reset_boundary, previous_reset_boundary
from engine.interpreter import RuleEngine, evaluate
from engine.phases import compute_phases
from engine.throttle import throttle

__all__ = [
    "DayBoundary",
    "EvaluationContext",
    "RuleEngine",
    "build_context",
    "compute_phases",
    "date_key",
    "evaluate",
    "next_reset_boundary",
    "previous_reset_boundary",
    "throttle",
]
