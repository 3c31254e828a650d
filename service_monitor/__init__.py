"""Service monitor API with on-call alert escalation."""
