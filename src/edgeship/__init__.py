"""Edgeship: resilient build-and-deploy pipeline for generated web apps."""

__version__ = "0.1.0"
