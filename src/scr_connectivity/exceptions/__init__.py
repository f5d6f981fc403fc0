"""
Custom exception classes for SCR connectivity modelling
"""

from .model_errors import (
    SCRError, DataValidationError, UnreachableCellError,
    NumericalDegeneracyError, ConvergenceFailure
)

__all__ = [
    'SCRError',
    'DataValidationError',
    'UnreachableCellError',
    'NumericalDegeneracyError',
    'ConvergenceFailure'
]
