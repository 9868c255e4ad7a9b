"""Session orchestration and events."""

from .events import EventBus
from .orchestrator import DocumentNotFoundError, SessionOrchestrator

__all__ = ["DocumentNotFoundError", "EventBus", "SessionOrchestrator"]
