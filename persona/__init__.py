"""Persona - unified streaming chat completions over native and OpenAI-compatible providers."""

__version__ = "0.1.0"

__all__ = ["__version__"]
