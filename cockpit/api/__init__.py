"""FastAPI surface for the cockpit."""
