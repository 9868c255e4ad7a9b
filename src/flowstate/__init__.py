"""FlowState: an AI-assisted writing session core."""

__version__ = "0.3.0"
