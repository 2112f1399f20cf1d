"""Run-level jobs: orchestrator, PDF queue, normalizer."""
