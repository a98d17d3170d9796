"""LLM pipeline for AI tip generation."""
