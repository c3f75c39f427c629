"""lifeboat — Save your AI companion from a chat export."""

__version__ = "0.1.0"
