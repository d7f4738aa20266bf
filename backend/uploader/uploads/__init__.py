"""Upload pipeline: temp materializer, orchestrator and HTTP router."""
