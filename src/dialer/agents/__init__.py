"""Agent presence and registration."""
