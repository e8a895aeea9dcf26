from importlib import metadata

try:
    __version__ = metadata.version("ctgrowth")
except Exception:
    __version__ = "unknown"

from .errors import CTGrowthError, InvalidRecord, DegenerateLikelihood, NonConvergence
from .parameters import Parameter, FreeParameter, ParameterSet
from .model import MatrixSpec, ModelSpec, StateSpaceMatrices, growth_model
from .solvers import ContinuousTimeTransition, DiscreteTransition
from .filters import KalmanFilter, FilterResult
from .utils.timeseries_data import (
    Observation,
    SubjectSeries,
    build_subject_series,
    build_panel,
)
from .opt import (
    MultiSubjectObjective,
    ParameterEstimator,
    EstimatorResult,
    SensitivityResult,
)
from .utils.logger import LoggerManager
