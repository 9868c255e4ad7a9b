"""Settings, storage, history and export services."""
