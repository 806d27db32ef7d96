"""cronbot - scheduled LLM jobs that post to chat channels."""

__version__ = "0.4.0"
