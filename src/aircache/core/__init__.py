"""Core value types and the retry framework."""
