"""ApplicationDefinition controller module.

This module provides the ApplicationController that converges the child
objects of ApplicationDefinition resources and reports their status.
"""

from .controller import ApplicationController, ReconcileResult

__all__ = [
    "ApplicationController",
    "ReconcileResult",
]
