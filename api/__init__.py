"""HTTP boundary: FastAPI app streaming orchestrator events as NDJSON."""
