"""Document model, editor state and timers."""
