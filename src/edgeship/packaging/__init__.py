"""Artifact packaging: placement rule and generated edge entrypoint."""
