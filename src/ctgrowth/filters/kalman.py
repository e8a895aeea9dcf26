#########################################################################################
##
##                  KALMAN FILTER FOR IRREGULARLY SAMPLED SUBJECTS
##                               (filters/kalman.py)
##
##                                Kevin McBride 2026
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import NamedTuple

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve, eigvalsh

from ..constants import LOG_2PI
from ..errors import DegenerateLikelihood
from ..model import StateSpaceMatrices
from ..solvers.transition import ContinuousTimeTransition
from ..utils.timeseries_data import SubjectSeries


# RESULTS ===============================================================================

class FilterResult(NamedTuple):
    """Outcome of filtering one subject.

    ``predicted_*`` / ``filtered_*`` are ``None`` unless the filter was created
    with ``store_steps=True``; otherwise they have one entry per observation.
    """

    log_likelihood: float
    n_obs: int
    mean: np.ndarray            # terminal filtered mean, shape (n,)
    cov: np.ndarray             # terminal filtered covariance, shape (n, n)
    subject_id: object = None
    predicted_means: np.ndarray | None = None
    predicted_covs: np.ndarray | None = None
    filtered_means: np.ndarray | None = None
    filtered_covs: np.ndarray | None = None


# FILTER ================================================================================

class KalmanFilter:

    """Predict/update recursion producing a subject's exact Gaussian log-likelihood.

    For each observation ``(t_k, y_k)``:

    * predict over ``dt = t_k - t_{k-1}`` (``t_{-1}`` is the model's time
      origin) with the exact discretisation of the continuous-time dynamics,
    * update with innovation ``v = y - C m - D u``, ``S = C P C' + R``,
      gain ``K = P C' S^-1``, and accumulate
      ``-0.5 * (p log 2pi + log|S| + v' S^-1 v)``.

    Parameters
    ----------
    store_steps : bool
        Keep per-step predicted and filtered moments in the result.

    Notes
    -----
    The filter holds no state between runs; one instance can serve any
    number of subjects concurrently. An empty series contributes a
    log-likelihood of ``0.0`` and returns the initial moments.
    """

    def __init__(self, store_steps: bool = False):
        self.store_steps = bool(store_steps)


    @staticmethod
    def check_initial_covariance(P0, subject_id=None, tol: float = 1e-10) -> None:
        """Raise :class:`DegenerateLikelihood` unless *P0* is a covariance matrix.

        *P0* must be finite and positive semi-definite; eigenvalues down to
        ``-tol * max(1, max|eig|)`` are accepted as round-off.
        """
        if not np.all(np.isfinite(P0)):
            raise DegenerateLikelihood(
                "initial covariance P0 is not finite", subject_id=subject_id
            )
        eig = eigvalsh(P0)
        if eig[0] < -tol * max(1.0, float(np.max(np.abs(eig)))):
            raise DegenerateLikelihood(
                f"initial covariance P0 is not positive semi-definite "
                f"(smallest eigenvalue {eig[0]:.4g})",
                subject_id=subject_id,
            )


    @staticmethod
    def predict(mean, cov, transition):
        """Propagate ``(mean, cov)`` through one :class:`DiscreteTransition`."""
        Phi, Qd, c = transition
        mean_p = Phi @ mean + c
        cov_p = Phi @ cov @ Phi.T + Qd
        return mean_p, 0.5 * (cov_p + cov_p.T)


    @staticmethod
    def update(mean, cov, y, C, R, offset, subject_id=None, step=None):
        """Condition ``(mean, cov)`` on observation *y*.

        Returns
        -------
        mean, cov : np.ndarray
            Filtered moments.
        log_lik : float
            Log-density of *y* under the one-step-ahead prediction.

        Raises
        ------
        DegenerateLikelihood
            If the innovation covariance is not finite and positive definite.
        """
        innovation = y - C @ mean - offset
        S = C @ cov @ C.T + R
        S = 0.5 * (S + S.T)

        if not np.all(np.isfinite(S)):
            raise DegenerateLikelihood(
                f"non-finite innovation covariance at step {step}",
                subject_id=subject_id, step=step,
            )
        try:
            factor = cho_factor(S, lower=True, check_finite=False)
        except LinAlgError as err:
            raise DegenerateLikelihood(
                f"innovation covariance not positive definite at step {step}",
                subject_id=subject_id, step=step,
            ) from err

        diag = np.diag(factor[0])
        if np.any(diag <= 0.0):
            raise DegenerateLikelihood(
                f"innovation covariance not positive definite at step {step}",
                subject_id=subject_id, step=step,
            )

        PCt = cov @ C.T
        gain = cho_solve(factor, PCt.T, check_finite=False).T

        mean_f = mean + gain @ innovation
        cov_f = (np.eye(cov.shape[0]) - gain @ C) @ cov
        cov_f = 0.5 * (cov_f + cov_f.T)

        log_det = 2.0 * float(np.sum(np.log(diag)))
        mahal = float(innovation @ cho_solve(factor, innovation, check_finite=False))
        log_lik = -0.5 * (innovation.size * LOG_2PI + log_det + mahal)
        return mean_f, cov_f, log_lik


    def run(
        self,
        series: SubjectSeries,
        matrices: StateSpaceMatrices,
        time_origin: float = 0.0,
        transition: ContinuousTimeTransition | None = None,
    ) -> FilterResult:
        """Filter one subject.

        Parameters
        ----------
        series : SubjectSeries
            The subject's observations, strictly increasing in time.
        matrices : StateSpaceMatrices
            One evaluation of the model, shared read-only across subjects.
        time_origin : float
            Time at which ``x0`` / ``P0`` apply.
        transition : ContinuousTimeTransition, optional
            Pre-built discretiser for ``matrices`` (lets subjects share the
            per-interval cache); built on demand otherwise.

        Returns
        -------
        FilterResult

        Raises
        ------
        DegenerateLikelihood
            If ``P0`` is not positive semi-definite, or see :meth:`update`.
        ValueError
            If an observation precedes ``time_origin``.
        """
        mean = np.asarray(matrices.x0, dtype=float).reshape(-1)
        cov = np.asarray(matrices.P0, dtype=float)
        sid = series.subject_id
        n_obs = len(series)

        if n_obs == 0:
            return FilterResult(0.0, 0, mean.copy(), cov.copy(), subject_id=sid)

        self.check_initial_covariance(cov, sid)

        if series.time[0] < time_origin:
            raise ValueError(
                f"subject {sid!r}: first observation at t={series.time[0]} "
                f"precedes the time origin {time_origin}"
            )

        if transition is None:
            transition = ContinuousTimeTransition(
                matrices.A, matrices.Q, matrices.B, matrices.u
            )

        C = np.asarray(matrices.C, dtype=float)
        R = np.asarray(matrices.R, dtype=float)
        offset = (np.asarray(matrices.D) @ np.asarray(matrices.u)).reshape(-1)
        n_states = mean.size

        if self.store_steps:
            pred_m = np.empty((n_obs, n_states))
            pred_P = np.empty((n_obs, n_states, n_states))
            filt_m = np.empty((n_obs, n_states))
            filt_P = np.empty((n_obs, n_states, n_states))

        log_lik = 0.0
        t_prev = float(time_origin)
        for k in range(n_obs):
            t_k = float(series.time[k])
            mean, cov = self.predict(mean, cov, transition.discretize(t_k - t_prev))

            if self.store_steps:
                pred_m[k], pred_P[k] = mean, cov

            y_k = np.atleast_1d(series.data[k])
            mean, cov, ll_k = self.update(mean, cov, y_k, C, R, offset, sid, k)
            log_lik += ll_k
            t_prev = t_k

            if self.store_steps:
                filt_m[k], filt_P[k] = mean, cov

        if not self.store_steps:
            return FilterResult(log_lik, n_obs, mean, cov, subject_id=sid)

        return FilterResult(
            log_lik, n_obs, mean, cov,
            subject_id=sid,
            predicted_means=pred_m,
            predicted_covs=pred_P,
            filtered_means=filt_m,
            filtered_covs=filt_P,
        )
