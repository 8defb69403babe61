"""Store adapters used by the access engine."""
