"""Host-facing entry points."""
