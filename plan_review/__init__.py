"""Adversarial plan review hook for AI coding assistants."""

__version__ = "0.1.0"
