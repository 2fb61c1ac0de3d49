"""
Core modules for Quote Guard.

This package contains the domain records, pricing, budget enforcement,
rate limiting and retry primitives shared by the pipeline.
"""
