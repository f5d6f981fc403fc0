"""
Custom exception classes for SCR model fitting and connectivity errors.
"""

class SCRError(Exception):
    """Base exception for spatial capture-recapture model errors."""
    pass

class DataValidationError(SCRError):
    """Exception for malformed encounter or trap tables."""
    def __init__(self, message: str, problem=None):
        super().__init__(message)
        self.problem = problem

class UnreachableCellError(SCRError):
    """Exception for source-destination pairs with no finite-cost path."""
    def __init__(self, message: str, pairs=None):
        super().__init__(message)
        self.pairs = pairs

class NumericalDegeneracyError(SCRError):
    """Exception for a non-invertible Hessian at the optimum."""
    def __init__(self, message: str, hessian=None):
        super().__init__(message)
        self.hessian = hessian

class ConvergenceFailure(SCRError):
    """Exception for an optimizer run that did not converge."""
    def __init__(self, message: str, result=None, status=None):
        super().__init__(message)
        self.result = result
        self.status = status
