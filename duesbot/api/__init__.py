"""HTTP API package (FastAPI webhook app)."""
