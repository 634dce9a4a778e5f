"""
Exceptions and warnings raised by the ertorch inversion engine.

Geometry and numerical errors abort a run because no valid model exists yet.
Slow convergence and cancellation are not errors: they end a run normally with
``converged=False``.
"""


class InversionError(Exception):
    """Base class for all errors raised by an inversion run."""


class InsufficientDataError(InversionError):
    """
    Raised when a survey has fewer than four usable data points or fewer than
    two distinct electrode separations.
    """

    def __init__(self, message: str, n_data: int = 0, n_separations: int = 0):
        super().__init__(message)
        self.n_data = n_data
        self.n_separations = n_separations


class DegenerateGeometryError(InversionError):
    """Raised when the electrode layout collapses to a zero-extent grid."""


class NumericalInstabilityError(InversionError):
    """
    Raised when the regularized normal matrix stays singular after the damping
    escalation is exhausted.

    Parameters
    ----------
    message : str
        Description of the failure
    damping : float
        Last damping factor tried
    retries : int
        Number of escalation steps performed
    """

    def __init__(self, message: str, damping: float, retries: int):
        super().__init__(message)
        self.damping = damping
        self.retries = retries


class RejectedDataWarning(UserWarning):
    """Emitted when data points are dropped before the grid is built."""
