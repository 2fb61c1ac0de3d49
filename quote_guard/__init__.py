"""
Quote Guard.

Budget-aware, validated multi-source acquisition of stock quotes and
financial ratios.
"""

__version__ = "0.1.0"
