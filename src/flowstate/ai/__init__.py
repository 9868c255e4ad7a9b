"""Model client, prompts and the suggestion generator."""

from .client import AIClient, ApproxByteCounter, ClientSettings, TiktokenCounter
from .generator import OpenAISuggestionGenerator, SuggestionGenerator

__all__ = [
    "AIClient",
    "ApproxByteCounter",
    "ClientSettings",
    "OpenAISuggestionGenerator",
    "SuggestionGenerator",
    "TiktokenCounter",
]
