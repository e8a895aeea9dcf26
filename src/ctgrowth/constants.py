#########################################################################################
##
##                                DEFAULT SETTINGS
##                                 (constants.py)
##
##                                Kevin McBride 2026
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np


# LIKELIHOOD ============================================================================

LOG_2PI = float(np.log(2.0 * np.pi))


# OPTIMIZER =============================================================================

DEFAULT_MAX_ITER = 200
DEFAULT_FTOL = 1e-9
DEFAULT_GTOL = 1e-6

# objective value returned for trial points with a degenerate likelihood
DEFAULT_PENALTY = 1e10

# distance (relative to max(1, |bound|)) under which a parameter counts as "at bound"
BOUND_TOLERANCE = 1e-6

# fresh L-BFGS-B runs from the best point after a stalled line search
LINE_SEARCH_RESTARTS = 2


# GROWTH MODEL DEFAULTS =================================================================

GROWTH_DEFAULTS = {
    "b_y":     (-0.2, (-1.0, 0.0)),
    "yInMn":   (12.0, (-np.inf, np.inf)),
    "ySlMn":   (7.0,  (-np.inf, np.inf)),
    "yInV":    (25.0, (0.0, np.inf)),
    "yInSlCv": (3.0,  (-np.inf, np.inf)),
    "ySlV":    (0.7,  (0.0, np.inf)),
    "MerY":    (2.0,  (0.0, np.inf)),
}
