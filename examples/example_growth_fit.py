#########################################################################################
##
##               ctgrowth example: continuous-time growth model fit
##
##  Model:   d yIn/dt = b_y * yIn + ySl,   d ySl/dt = 0,   y = yIn + e
##  Fit:     all 7 growth parameters from a simulated wide-format panel
##           with irregular, subject-specific ages and missing occasions
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np
import pandas as pd

from ctgrowth import ParameterEstimator, build_panel, growth_model


# DATA GENERATION =======================================================================

def simulate_wide_table(n_subjects=80, n_occasions=5, seed=0):
    """Wide table ``oy0..oyK`` / ``age0..ageK`` with jittered ages and dropout."""
    rng = np.random.default_rng(seed)

    b_y, mean0 = -0.15, np.array([12.0, 7.0])
    P0 = np.array([[25.0, 3.0], [3.0, 0.7]])
    mer_y = 2.0

    rows = {}
    for i in range(n_subjects):
        yin, ysl = rng.multivariate_normal(mean0, P0)
        ages = np.arange(n_occasions) + rng.uniform(0.0, 0.5, size=n_occasions)
        ages[0] = 0.0
        level = np.exp(b_y * ages) * yin + (np.exp(b_y * ages) - 1.0) / b_y * ysl
        y = level + rng.normal(scale=np.sqrt(mer_y), size=n_occasions)

        # random dropout after the first occasion
        y[1:][rng.uniform(size=n_occasions - 1) < 0.15] = np.nan

        row = {f"oy{k}": y[k] for k in range(n_occasions)}
        row.update({f"age{k}": ages[k] for k in range(n_occasions)})
        rows[f"s{i:03d}"] = row

    return pd.DataFrame.from_dict(rows, orient="index")


# Run Example ===========================================================================

if __name__ == '__main__':

    table = simulate_wide_table()
    subjects = build_panel(table)

    est = ParameterEstimator(growth_model(), subjects)

    # Fit
    result = est.fit(max_iter=200)
    print(result)

    est.display()

    # Standard errors from the observed information
    sens = est.sensitivity()
    sens.display()

    # Terminal filtered state of the first few subjects
    for res in est.filter_subjects()[:3]:
        print(f"{res.subject_id}: yIn={res.mean[0]:.3f}  ySl={res.mean[1]:.3f}")
