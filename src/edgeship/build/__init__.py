"""Self-healing build: classification, auto-fixes and the retry loop."""
