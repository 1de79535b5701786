"""
Custom exceptions for the algorithms package.
"""


class OrbitflowError(Exception):
    """Base exception for orbitflow errors.
    
    Parameters
    ----------
    message : str
        The error message.
    """

    def __init__(self, message: str):
        super().__init__(message)


class IntegrationError(OrbitflowError):
    """Raised when an integrator cannot produce a valid trajectory.

    The flow layer never recovers from this error. Every flow operation the
    error travels through records itself in :attr:`trail`, and
    :attr:`operation` always names the outermost one.

    Parameters
    ----------
    message : str
        The error message.
    operation : str or None, optional
        Flow operation that triggered the integration.
    column : int or None, optional
        Ensemble column whose trajectory failed.

    Attributes
    ----------
    operation : str or None
        Outermost flow operation (``"endpoint"``, ``"time_sol"``,
        ``"full"``, ``"differential"`` or ``"ensemble"``).
    trail : tuple of str
        Every operation tag in call order, innermost first.
    column : int or None
        Ensemble column index, when the failure happened inside a batch.
    """

    def __init__(self, message: str, operation: "str | None" = None, column: "int | None" = None):
        super().__init__(message)
        self.operation = None
        self.trail = ()
        self.column = column
        if operation is not None:
            self.tag(operation)

    def tag(self, operation: str) -> "IntegrationError":
        """Record *operation* as the outermost operation and return self."""
        self.operation = operation
        self.trail = self.trail + (operation,)
        return self

    def __str__(self) -> str:
        msg = super().__str__()
        details = []
        if self.operation is not None:
            details.append(f"operation={self.operation}")
        if self.column is not None:
            details.append(f"column={self.column}")
        if details:
            return f"{msg} [{', '.join(details)}]"
        return msg


class IntegrationTimeoutError(IntegrationError):
    """Raised when an integration does not finish before its deadline.
    
    Parameters
    ----------
    message : str
        The error message.
    """


class PreconditionError(OrbitflowError, ValueError):
    """Raised when the inputs of a flow query are inconsistent.

    Precondition errors are detected before any integration is attempted.
    
    Parameters
    ----------
    message : str
        The error message.
    """

    def __init__(self, message: str):
        super().__init__(message)
