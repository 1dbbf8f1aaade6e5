"""Event-driven session engine."""
