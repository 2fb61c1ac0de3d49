"""
SDK for Quote Guard.

Chat client for OpenAI-compatible gateways with token and cost accounting.
"""

from .openai_client import ChatResponse, GatewayChatClient

__all__ = ["ChatResponse", "GatewayChatClient"]
