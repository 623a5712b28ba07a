"""
appdef converges ApplicationDefinition objects into the child objects their
components describe, and reports their health back in the status.
"""

__all__ = [
    "manifest",
    "store",
    "controller",
    "strategy",
    "pipeline",
    "applier",
    "health",
    "status",
    "events",
    "config",
    "loader",
    "exceptions",
]
