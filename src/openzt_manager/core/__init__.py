"""Core instance orchestration: models, ports, registry, orchestrator, cleanup."""
