"""turnloop — a streaming tool-calling agent loop for OpenAI-compatible servers."""

__version__ = "0.1.0"
