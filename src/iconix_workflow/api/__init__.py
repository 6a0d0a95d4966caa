"""HTTP surface over the orchestrator."""
