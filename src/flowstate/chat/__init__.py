"""Chat transcript models."""
