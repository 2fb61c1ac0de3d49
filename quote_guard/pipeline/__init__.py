"""Acquisition pipeline: gated AI strategy, fallback orchestration and analysis."""
