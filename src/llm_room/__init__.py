"""LLM Room: a shared chat room served by one claimed host model."""

__version__ = "0.1.0"
