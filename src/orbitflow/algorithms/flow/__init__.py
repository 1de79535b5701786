from .composite import Flow
from .ensemble import EnsembleFlowMap
from .floquet import floquet_multipliers, monodromy_matrix
from .trajectory import FlowMap, FullTrajectoryFlow, TimeStampedFlow
from .types import DifferentialResult, FullTrajectoryResult, TrajectoryResult
from .variational import ExactVariationalFlow, FiniteDifferenceVariationalFlow

__all__ = [
    "Flow",
    "FlowMap",
    "TimeStampedFlow",
    "FullTrajectoryFlow",
    "EnsembleFlowMap",
    "ExactVariationalFlow",
    "FiniteDifferenceVariationalFlow",
    "TrajectoryResult",
    "FullTrajectoryResult",
    "DifferentialResult",
    "monodromy_matrix",
    "floquet_multipliers",
]
