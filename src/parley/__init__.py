"""
parley — agent orchestration engine.

Detects tool-call directives in model output, runs a two-phase
generate → execute → regenerate turn, streams thinking markers alongside
content deltas, and binds caller conversation handles to durable sessions.
"""

__version__ = "0.1.0"
