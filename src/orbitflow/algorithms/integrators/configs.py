from dataclasses import dataclass


@dataclass(frozen=True)
class _EventConfig:
    """Settings of a scalar event ``g(t, y) = 0``.

    Parameters
    ----------
    direction : int, default 0
        ``0`` reports any sign change, ``+1`` only crossings where *g*
        increases and ``-1`` only crossings where it decreases. Starting
        exactly on the surface never counts as a crossing.
    terminal : bool, default True
        Stop the trajectory at the first admissible crossing. Otherwise the
        crossing time is appended to ``_Solution.t_events``.
    tol : float, default 1e-12
        Width of the time bracket at which bisection stops.
    max_iter : int, default 50
        Bisection iteration cap.
    """

    direction: int = 0
    terminal: bool = True
    tol: float = 1e-12
    max_iter: int = 50
