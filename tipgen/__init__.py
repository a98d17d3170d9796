"""AI tip generation pipeline: context, prompts, Ollama gateway, validation, persistence."""

__version__ = "1.0.0"
