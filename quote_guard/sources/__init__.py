"""
Source adapters.

Each adapter turns one upstream (structured API, HTML pages, generative
model, REST API) into QuoteRecord values.
"""

from .base import QuoteSource

__all__ = ["QuoteSource"]
