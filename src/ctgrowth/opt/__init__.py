#########################################################################################
##
##                   MAXIMUM-LIKELIHOOD ESTIMATION - PUBLIC API
##                               (opt/__init__.py)
##
##                                Kevin McBride 2026
##
#########################################################################################

from .parameter_estimator import (
    MultiSubjectObjective,
    ParameterEstimator,
    EstimatorResult,
)
from .sensitivity import SensitivityResult
