#########################################################################################
##
##                                 EXCEPTION TYPES
##                                   (errors.py)
##
##                                Kevin McBride 2026
##
#########################################################################################


# EXCEPTIONS ============================================================================

class CTGrowthError(Exception):
    """Base class for all ctgrowth errors."""


class InvalidRecord(CTGrowthError, ValueError):
    """A subject's raw data is structurally malformed.

    Raised while building subject series, before any optimization begins.
    """

    def __init__(self, message: str, subject_id=None):
        self.subject_id = subject_id
        if subject_id is not None:
            message = f"subject {subject_id!r}: {message}"
        super().__init__(message)


class DegenerateLikelihood(CTGrowthError, ArithmeticError):
    """Innovation covariance is not positive definite at some filter step.

    Parameters
    ----------
    message : str
        Description of the failure.
    subject_id : hashable, optional
        Identifier of the subject being filtered.
    step : int, optional
        Index of the observation at which the failure occurred.
    """

    def __init__(self, message: str, subject_id=None, step: int | None = None):
        self.subject_id = subject_id
        self.step = step
        super().__init__(message)


class NonConvergence(CTGrowthError, RuntimeError):
    """Optimizer exhausted its iteration, evaluation or time budget.

    The best result found so far is attached as ``result``.
    """

    def __init__(self, message: str, result=None):
        self.result = result
        super().__init__(message)
