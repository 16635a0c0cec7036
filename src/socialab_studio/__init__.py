"""Socialab Studio assistant core.

Streams agent turns, gates agent tool calls behind human approval and keeps
attached gallery images in sync with the conversation.
"""

__version__ = "0.3.0"
