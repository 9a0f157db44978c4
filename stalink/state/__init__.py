"""Runtime state reporting."""
