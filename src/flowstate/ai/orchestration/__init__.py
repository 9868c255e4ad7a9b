"""Proactive analysis and suggestion application."""

from .application import ApplyOutcome, SuggestionApplier
from .proactive import ProactiveAnalysisLoop, ProactiveState, SuggestionChange

__all__ = [
    "ApplyOutcome",
    "ProactiveAnalysisLoop",
    "ProactiveState",
    "SuggestionApplier",
    "SuggestionChange",
]
