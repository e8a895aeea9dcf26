#########################################################################################
##
##                  MULTI-SUBJECT MAXIMUM-LIKELIHOOD ESTIMATION
##                             (parameter_estimator.py)
##
##                                Kevin McBride 2026
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import math
import time
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
import scipy.optimize as sci_opt

from ..constants import (
    BOUND_TOLERANCE,
    DEFAULT_FTOL,
    DEFAULT_GTOL,
    DEFAULT_MAX_ITER,
    DEFAULT_PENALTY,
    LINE_SEARCH_RESTARTS,
)
from ..errors import DegenerateLikelihood, NonConvergence
from ..filters.kalman import FilterResult, KalmanFilter
from ..model import ModelSpec
from ..solvers.transition import ContinuousTimeTransition
from ..utils.logger import LoggerManager
from ..utils.timeseries_data import SubjectSeries
from .sensitivity import SensitivityResult


__all__ = [
    "MultiSubjectObjective",
    "ParameterEstimator",
    "EstimatorResult",
]


# OBJECTIVE =============================================================================

class MultiSubjectObjective:
    """Joint negative log-likelihood of independent subjects under shared parameters.

    Every call evaluates the model once, filters each subject against the
    same read-only matrices and sums the per-subject log-likelihoods in
    subject order.

    Parameters
    ----------
    model : ModelSpec
        Shared model template.
    subjects : sequence of SubjectSeries
        One series per subject. Empty series contribute ``0``.
    kalman : KalmanFilter, optional
        Filter used for likelihood evaluations.
    n_workers : int
        Number of threads used to filter subjects; ``1`` runs sequentially.

    Notes
    -----
    The result does not depend on ``n_workers``: contributions are always
    reduced in subject-index order with :func:`math.fsum`, so repeated
    evaluations at the same ``theta`` are bitwise identical.
    """

    def __init__(
        self,
        model: ModelSpec,
        subjects: Sequence[SubjectSeries],
        *,
        kalman: KalmanFilter | None = None,
        n_workers: int = 1,
    ):
        if not isinstance(model, ModelSpec):
            raise TypeError(f"expected ModelSpec, got {type(model).__name__}")

        subjects = list(subjects)
        for s in subjects:
            if not isinstance(s, SubjectSeries):
                raise TypeError(
                    f"subjects must be SubjectSeries, got {type(s).__name__}"
                )
        if int(n_workers) < 1:
            raise ValueError("n_workers must be >= 1")

        self.model = model
        self.subjects = tuple(subjects)
        self.kalman = kalman if kalman is not None else KalmanFilter()
        self.n_workers = int(n_workers)


    # PROPERTIES ------------------------------------------------------------------------

    @property
    def n_subjects(self) -> int:
        return len(self.subjects)


    @property
    def n_observations(self) -> int:
        """Total number of observations across subjects."""
        return int(sum(len(s) for s in self.subjects))


    @property
    def n_empty(self) -> int:
        """Number of subjects without observations (zero contribution)."""
        return sum(1 for s in self.subjects if s.is_empty)


    # EVALUATION ------------------------------------------------------------------------

    def filter_results(self, theta, *, store_steps: bool = False) -> list[FilterResult]:
        """Filter every subject at *theta* and return the per-subject results."""
        mats = self.model.evaluate(theta)
        transition = ContinuousTimeTransition(mats.A, mats.Q, mats.B, mats.u)
        kalman = KalmanFilter(store_steps=True) if store_steps else self.kalman
        origin = self.model.time_origin

        def _run(series: SubjectSeries) -> FilterResult:
            return kalman.run(series, mats, origin, transition)

        if self.n_workers > 1 and len(self.subjects) > 1:
            with ThreadPoolExecutor(max_workers=self.n_workers) as pool:
                return list(pool.map(_run, self.subjects))
        return [_run(s) for s in self.subjects]


    def contributions(self, theta) -> np.ndarray:
        """Per-subject log-likelihoods, in subject order."""
        return np.array(
            [r.log_likelihood for r in self.filter_results(theta)], dtype=float
        )


    def log_likelihood(self, theta) -> float:
        """Joint log-likelihood (deterministic ordered sum)."""
        return math.fsum(r.log_likelihood for r in self.filter_results(theta))


    def minus2ll(self, theta) -> float:
        """``-2 log L``, the usual fit statistic."""
        return -2.0 * self.log_likelihood(theta)


    def __call__(self, theta) -> float:
        """Negative joint log-likelihood (the quantity the optimizer minimises)."""
        return -self.log_likelihood(theta)


# ESTIMATOR RESULT ======================================================================

@dataclass
class EstimatorResult:
    """Maximum-likelihood fit result.

    ``cost`` is the minimised negative log-likelihood. ``status`` is one of
    ``"converged"``, ``"max_iterations"``, ``"timeout"`` or ``"failed"``;
    only ``"converged"`` sets ``success``. ``at_bounds`` lists parameters that
    ended on a box bound, which is not a failure but often signals an
    unidentified model.
    """

    x: np.ndarray
    cost: float
    nfev: int
    success: bool
    message: str
    nit: int = 0
    status: str = "converged"
    names: list[str] = field(default_factory=list)
    values: dict[str, float] = field(default_factory=dict)
    at_bounds: list[str] = field(default_factory=list)
    n_degenerate: int = 0


    @property
    def converged(self) -> bool:
        return self.status == "converged"


    @property
    def log_likelihood(self) -> float:
        return -self.cost


    @property
    def minus2ll(self) -> float:
        return 2.0 * self.cost


    def __repr__(self) -> str:
        status = "SUCCESS" if self.success else f"FAILED ({self.status})"
        bound_s = f", at_bounds={self.at_bounds}" if self.at_bounds else ""
        return (
            f"EstimatorResult({status}, cost={self.cost:.6g}, "
            f"nit={self.nit}, nfev={self.nfev}, x={self.x}{bound_s})"
        )


# PARAMETER ESTIMATOR ===================================================================

class ParameterEstimator:
    """Bounded maximum-likelihood estimation of a shared parameter vector.

    Minimises the :class:`MultiSubjectObjective` with SciPy's L-BFGS-B,
    honouring each parameter's box bounds.

    Parameters
    ----------
    model : ModelSpec
        Model template whose parameters are estimated.
    subjects : sequence of SubjectSeries
        Per-subject series built with :func:`build_subject_series` or
        :func:`build_panel`.
    n_workers : int
        Threads used to filter subjects inside each objective evaluation.
    log : bool
        Emit INFO-level progress messages.

    Notes
    -----
    **Degenerate trial points.** When a trial vector makes some innovation
    covariance non-positive-definite the objective returns ``penalty`` instead
    of raising, so the line search backs off. Occurrences are counted in
    ``result.n_degenerate`` and logged.

    **Budget exhaustion.** Hitting ``max_iter`` or ``max_time`` raises
    :class:`NonConvergence` (with the best result attached as ``err.result``)
    unless ``raise_on_failure=False``, in which case the result is returned
    with ``success=False``.

    Example
    -------
    .. code-block:: python

        from ctgrowth import ParameterEstimator, build_panel, growth_model

        subjects = build_panel(df)
        est = ParameterEstimator(growth_model(), subjects)
        result = est.fit(max_iter=200)
        est.display()
        sens = est.sensitivity()
        sens.display()
    """

    def __init__(
        self,
        model: ModelSpec,
        subjects: Sequence[SubjectSeries],
        *,
        n_workers: int = 1,
        log: bool = True,
    ):
        self.model = model
        self.objective = MultiSubjectObjective(model, subjects, n_workers=n_workers)
        self.log = bool(log)
        self.logger = LoggerManager().get_logger("opt")

        self.result: EstimatorResult | None = None
        self._cached_x: np.ndarray | None = None


    # PROPERTIES ------------------------------------------------------------------------

    @property
    def parameters(self):
        """The model's :class:`~ctgrowth.parameters.ParameterSet`."""
        return self.model.parameters


    @property
    def subjects(self) -> tuple[SubjectSeries, ...]:
        return self.objective.subjects


    # INTERNAL HELPERS ------------------------------------------------------------------

    def _info(self, msg: str, *args) -> None:
        if self.log:
            self.logger.info(msg, *args)


    def _validate_fit_inputs(self) -> None:
        """Raise early with clear messages for degenerate fit configurations."""
        if len(self.parameters) == 0:
            raise ValueError("No parameters to fit; the model declares no free parameters.")

        if self.objective.n_observations == 0:
            raise ValueError("No observations provided; every subject series is empty.")


    def _at_bounds(self, x: np.ndarray, tol: float = BOUND_TOLERANCE) -> list[str]:
        """Names of parameters lying on (within *tol* of) a finite bound."""
        names = []
        for p, xi in zip(self.parameters, x):
            lo, hi = p.bounds
            if np.isfinite(lo) and xi - lo <= tol * max(1.0, abs(lo)):
                names.append(p.name)
            elif np.isfinite(hi) and hi - xi <= tol * max(1.0, abs(hi)):
                names.append(p.name)
        return names


    # OPTIMIZATION ENGINE ---------------------------------------------------------------

    def apply(self, x: np.ndarray) -> None:
        """Write the optimizer-space vector *x* into the model parameters."""
        self.parameters.apply(x)


    def fit(
        self,
        *,
        x0: Sequence[float] | None = None,
        max_iter: int = DEFAULT_MAX_ITER,
        max_fun: int | None = None,
        ftol: float = DEFAULT_FTOL,
        gtol: float = DEFAULT_GTOL,
        max_time: float | None = None,
        penalty: float = DEFAULT_PENALTY,
        raise_on_failure: bool = True,
    ) -> EstimatorResult:
        """Maximise the joint likelihood subject to the parameter bounds.

        Parameters
        ----------
        x0 : sequence of float, optional
            Starting vector in optimizer space; current parameter values by
            default. Entries outside the bounds are clipped (with a warning).
        max_iter : int
            L-BFGS-B iteration budget.
        max_fun : int, optional
            Objective evaluation budget; SciPy's default when omitted.
        ftol : float
            Relative reduction tolerance on the objective.
        gtol : float
            Projected-gradient tolerance.
        max_time : float, optional
            Wall-clock budget in seconds, checked after every iteration.
        penalty : float
            Objective value returned for degenerate trial points.
        raise_on_failure : bool
            Raise :class:`NonConvergence` when a budget is exhausted.

        Returns
        -------
        EstimatorResult

        Raises
        ------
        NonConvergence
            Budget exhausted and ``raise_on_failure`` is ``True``.
        """
        self._validate_fit_inputs()

        lower, upper = self.parameters.lower, self.parameters.upper
        x_start = (
            np.array(self.parameters.vector(), dtype=float)
            if x0 is None else self.parameters.check(x0).copy()
        )
        clipped = np.clip(x_start, lower, upper)
        if not np.array_equal(clipped, x_start):
            warnings.warn(
                "fit(): starting values outside the bounds were clipped",
                UserWarning,
                stacklevel=2,
            )
        x_start = clipped

        state = {"best_x": x_start.copy(), "best_f": np.inf, "n_degenerate": 0, "nfev": 0}

        def evaluate(xk: np.ndarray, count: bool = True) -> float | None:
            """Objective at *xk*, or ``None`` where the likelihood is degenerate."""
            state["nfev"] += 1
            try:
                f = self.objective(xk)
            except DegenerateLikelihood as err:
                if count:
                    state["n_degenerate"] += 1
                    self.logger.debug("degenerate likelihood at x=%s: %s", xk, err)
                return None

            if not np.isfinite(f):
                if count:
                    state["n_degenerate"] += 1
                    self.logger.debug("non-finite objective at x=%s", xk)
                return None
            return f

        rel = np.sqrt(np.finfo(float).eps)

        def objective_and_gradient(xk: np.ndarray) -> tuple[float, np.ndarray]:
            xk = np.asarray(xk, dtype=float)
            f0 = evaluate(xk)
            if f0 is None:
                f0 = float(penalty)
            elif f0 < state["best_f"]:
                state["best_f"] = f0
                state["best_x"] = xk.copy()

            # one-sided differences, taken on whichever side stays feasible
            h = rel * np.maximum(1.0, np.abs(xk))
            grad = np.zeros(xk.size)
            for j in range(xk.size):
                steps = [s for s in (h[j], -h[j]) if lower[j] <= xk[j] + s <= upper[j]]
                for step in steps:
                    xs = xk.copy()
                    xs[j] += step
                    fs = evaluate(xs, count=False)
                    if fs is not None:
                        grad[j] = (fs - f0) / step
                        break
            return f0, grad

        t_start = time.perf_counter()
        timed_out = False

        def callback(intermediate_result):
            nonlocal timed_out
            if max_time is not None and time.perf_counter() - t_start > max_time:
                timed_out = True
                raise StopIteration

        opts: dict = {"maxiter": int(max_iter), "ftol": float(ftol), "gtol": float(gtol)}
        if max_fun is not None:
            opts["maxfun"] = int(max_fun)

        self._info(
            "fitting %d parameter(s) to %d subject(s), %d observation(s)",
            len(self.parameters), self.objective.n_subjects, self.objective.n_observations,
        )

        x_run, nit = x_start, 0
        for _ in range(1 + LINE_SEARCH_RESTARTS):
            opts["maxiter"] = max(1, int(max_iter) - nit)
            res = sci_opt.minimize(
                objective_and_gradient,
                x0=x_run,
                jac=True,
                method="L-BFGS-B",
                bounds=list(zip(lower, upper)),
                callback=callback,
                options=opts,
            )
            nit += int(getattr(res, "nit", 0))

            # status 2: the line search stalled, typically against an infeasible region
            if timed_out or res.status != 2 or nit >= max_iter or not np.isfinite(state["best_f"]):
                break
            x_run = state["best_x"].copy()
            self.logger.debug(
                "line search stalled (%s); restarting from the best point", res.message
            )

        # the last iterate can be a penalised point when the search stalls
        if state["best_f"] < float(res.fun):
            x_final, f_final = state["best_x"], float(state["best_f"])
        else:
            x_final, f_final = np.asarray(res.x, dtype=float), float(res.fun)

        if timed_out:
            status = "timeout"
        elif res.status == 1:
            status = "max_iterations"
        elif res.success:
            status = "converged"
        else:
            status = "failed"

        self.apply(x_final)
        self._cached_x = x_final.copy()

        at_bounds = self._at_bounds(x_final)
        result = EstimatorResult(
            x=x_final,
            cost=f_final,
            nfev=state["nfev"],
            success=status == "converged",
            message=str(res.message),
            nit=nit,
            status=status,
            names=self.parameters.names,
            values=dict(zip(self.parameters.names, self.parameters.to_model(x_final))),
            at_bounds=at_bounds,
            n_degenerate=state["n_degenerate"],
        )
        self.result = result

        elapsed = time.perf_counter() - t_start
        self._info(
            "fit finished (%s) after %d iteration(s), %d evaluation(s), %.2fs: -2LL = %.6g",
            status, result.nit, result.nfev, elapsed, result.minus2ll,
        )
        if result.n_degenerate:
            self.logger.warning(
                "%d trial point(s) had a degenerate likelihood and were penalised",
                result.n_degenerate,
            )
        if at_bounds:
            self.logger.warning(
                "parameter(s) %s converged to a bound; the model may not be identified",
                at_bounds,
            )

        if status in ("max_iterations", "timeout"):
            msg = (
                f"optimizer did not converge ({status}) after {result.nit} iteration(s): "
                f"{result.message}"
            )
            self.logger.warning(msg)
            if raise_on_failure:
                raise NonConvergence(msg, result)
        elif status == "failed":
            self.logger.warning("optimizer stopped without convergence: %s", result.message)

        return result


    # SENSITIVITY & STANDARD ERRORS -----------------------------------------------------

    def hessian(self, x=None, *, eps: float | None = None) -> np.ndarray:
        """Central finite-difference Hessian of the negative log-likelihood.

        Parameters
        ----------
        x : array_like, optional
            Evaluation point (optimizer space); the last fitted vector by default.
        eps : float, optional
            Relative step; defaults to ``machine_eps ** 0.25``. The step for
            parameter ``j`` is ``eps * max(1, |x_j|)``.

        Returns
        -------
        np.ndarray, shape (n_params, n_params)

        Raises
        ------
        DegenerateLikelihood
            If a perturbed point is infeasible (typically a variance sitting
            on its zero bound).
        """
        x_arr = self._resolve_x(x)
        rel = eps if eps is not None else np.finfo(float).eps ** 0.25
        h = rel * np.maximum(1.0, np.abs(x_arr))
        n = x_arr.size
        f = self.objective

        def _f(*shifts) -> float:
            xp = x_arr.copy()
            for j, s in shifts:
                xp[j] += s * h[j]
            return f(xp)

        f0 = f(x_arr)
        H = np.empty((n, n))
        for i in range(n):
            H[i, i] = (_f((i, 1)) - 2.0 * f0 + _f((i, -1))) / h[i] ** 2
            for j in range(i):
                H[i, j] = H[j, i] = (
                    _f((i, 1), (j, 1)) - _f((i, 1), (j, -1))
                    - _f((i, -1), (j, 1)) + _f((i, -1), (j, -1))
                ) / (4.0 * h[i] * h[j])
        return H


    def _resolve_x(self, x) -> np.ndarray:
        if x is not None:
            return self.parameters.check(x).copy()
        if self._cached_x is None:
            raise ValueError(
                "No x provided and no cached fit result available. "
                "Run fit() first or pass x explicitly."
            )
        return self._cached_x.copy()


    def sensitivity(self, x=None, *, eps: float | None = None) -> SensitivityResult:
        """Standard errors and identifiability diagnostics at ``x``.

        The observed information is the Hessian of the negative
        log-likelihood (:meth:`hessian`); its pseudo-inverse estimates the
        parameter covariance.

        Parameters
        ----------
        x : array_like, optional
            Evaluation point; the last fitted vector by default.
        eps : float, optional
            Relative finite-difference step.

        Returns
        -------
        SensitivityResult
            Standard errors are in optimizer space; for untransformed
            parameters this equals model space.
        """
        x_arr = self._resolve_x(x)
        try:
            H = self.hessian(x_arr, eps=eps)
        except DegenerateLikelihood as err:
            self.logger.warning(
                "Hessian undefined near x (%s); standard errors are unavailable", err
            )
            H = np.full((x_arr.size, x_arr.size), np.nan)

        return SensitivityResult(
            hessian=H,
            param_names=self.parameters.names,
            param_values=self.parameters.to_model(x_arr),
            at_bounds=self._at_bounds(x_arr),
        )


    # PER-SUBJECT STATES ----------------------------------------------------------------

    def filter_subjects(self, x=None, *, store_steps: bool = False) -> list[FilterResult]:
        """Per-subject filter results (terminal filtered states) at ``x``."""
        return self.objective.filter_results(self._resolve_x(x), store_steps=store_steps)


    # RESULTS ---------------------------------------------------------------------------

    def display(self) -> None:
        """Print a summary table of all parameters and their current values."""
        print("=" * 60)
        print("Parameter Estimation Results")
        print("=" * 60)

        if self.result is not None:
            print(f"  status   : {self.result.status}")
            print(f"  -2LL     : {self.result.minus2ll:.6g}")
            print(f"  subjects : {self.objective.n_subjects}"
                  f"  (observations: {self.objective.n_observations})")

        print("\nParameters:")
        print("-" * 40)
        at_bounds = set(self.result.at_bounds) if self.result is not None else set()
        for p in self.parameters:
            val = p()
            lo, hi = p.bounds
            lo_s = f"{lo:.4g}" if lo != -np.inf else "-inf"
            hi_s = f"{hi:.4g}" if hi != np.inf else "inf"
            bounds_s = f"  [{lo_s}, {hi_s}]" if p.is_bounded else ""
            flag = "  (at bound)" if p.name in at_bounds else ""
            if p.transform is not None:
                print(f"  {p.name:16s}  x={p.value:.6g}  ->  {val:.6g}{bounds_s}{flag}")
            else:
                print(f"  {p.name:16s}  = {val:.6g}{bounds_s}{flag}")

        print("=" * 60)
