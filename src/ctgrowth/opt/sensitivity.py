#########################################################################################
##
##                 STANDARD ERRORS & PRACTICAL IDENTIFIABILITY
##                              (opt/sensitivity.py)
##
##                                Kevin McBride 2026
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import warnings

import numpy as np


# CLASS: SensitivityResult ==============================================================

class SensitivityResult:
    """Local standard errors and identifiability diagnostics at ``x*``.

    All statistics derive from the observed information, the Hessian of the
    negative joint log-likelihood at ``x*`` (typically the optimum returned by
    :meth:`ParameterEstimator.fit`).

    Parameters
    ----------
    hessian : np.ndarray, shape (n_params, n_params)
        Hessian of the negative log-likelihood at ``x*``.
    param_names : list of str
        Parameter names in vector order.
    param_values : np.ndarray, shape (n_params,)
        Model-space parameter values at ``x*``.
    at_bounds : sequence of str
        Parameters lying on a bound at ``x*``.

    Attributes
    ----------
    information : np.ndarray
        Observed information (the symmetrised Hessian).
    covariance : np.ndarray
        ``pinv(information)``.
    std_errors : np.ndarray
        ``sqrt(diag(covariance))``; NaN where the variance estimate is not
        positive. Expressed in optimizer space; for untransformed parameters
        this equals model space.
    correlation : np.ndarray
        Normalised covariance.
    eigenvalues : np.ndarray
        Eigenvalues of the information, descending.
    eigenvectors : np.ndarray
        Corresponding eigenvectors (columns).
    condition_number : float
        Ratio of the largest to smallest eigenvalue; ``inf`` when any
        eigenvalue is non-positive.

    Notes
    -----
    Standard errors of parameters on a bound (e.g. a variance at zero) are
    not meaningful: the asymptotic theory assumes an interior optimum. A
    ``UserWarning`` is issued when that is the case or when the information
    matrix is not positive definite.
    """

    #: |r| above which two estimates are reported as confounded
    CORRELATION_THRESHOLD = 0.9

    def __init__(
        self,
        hessian: np.ndarray,
        param_names: list,
        param_values: np.ndarray,
        at_bounds=(),
    ):
        H = np.asarray(hessian, dtype=float)
        self.hessian = H
        self.information = 0.5 * (H + H.T)
        self.param_names = list(param_names)
        self.param_values = np.asarray(param_values, dtype=float)
        self.at_bounds = list(at_bounds)

        self._invert()
        self._decompose()

        if not np.all(np.isfinite(self.std_errors)):
            warnings.warn(
                "some standard errors are undefined; the observed information "
                "is not positive definite at this point",
                UserWarning,
                stacklevel=2,
            )
        if self.at_bounds:
            warnings.warn(
                f"parameter(s) {self.at_bounds} lie on a bound; their standard "
                "errors are not reliable",
                UserWarning,
                stacklevel=2,
            )


    # ANALYSIS ==========================================================================

    def _invert(self) -> None:
        """Covariance, standard errors and correlation from the information."""
        n_p = self.information.shape[0]

        if not np.all(np.isfinite(self.information)):
            self.covariance = np.full((n_p, n_p), np.nan)
            self.std_errors = np.full(n_p, np.nan)
            self.correlation = np.full((n_p, n_p), np.nan)
            return

        self.covariance = np.linalg.pinv(self.information)
        variances = np.diag(self.covariance)
        self.std_errors = np.sqrt(np.where(variances > 0.0, variances, np.nan))

        scale = np.outer(self.std_errors, self.std_errors)
        self.correlation = np.divide(
            self.covariance, scale,
            out=np.zeros((n_p, n_p)),
            where=np.isfinite(scale) & (scale > 0.0),
        )
        np.fill_diagonal(self.correlation, 1.0)


    def _decompose(self) -> None:
        """Eigen-decomposition (descending) and condition number of the information."""
        n_p = self.information.shape[0]

        if not np.all(np.isfinite(self.information)):
            self.eigenvalues = np.full(n_p, np.nan)
            self.eigenvectors = np.full((n_p, n_p), np.nan)
            self.condition_number = np.inf
            return

        eigenvalues, eigenvectors = np.linalg.eigh(self.information)
        order = np.argsort(eigenvalues)[::-1]
        self.eigenvalues = eigenvalues[order]
        self.eigenvectors = eigenvectors[:, order]

        if n_p and self.eigenvalues[-1] > 0.0:
            self.condition_number = float(self.eigenvalues[0] / self.eigenvalues[-1])
        else:
            self.condition_number = np.inf


    @property
    def is_positive_definite(self) -> bool:
        return bool(np.all(np.isfinite(self.eigenvalues)) and np.all(self.eigenvalues > 0.0))


    def std_error(self, name: str) -> float:
        """Standard error of parameter *name*."""
        return float(self.std_errors[self.param_names.index(name)])


    def as_dict(self) -> dict[str, tuple[float, float]]:
        """``{name: (value, std_error)}`` in parameter order."""
        return {
            name: (float(v), float(se))
            for name, v, se in zip(self.param_names, self.param_values, self.std_errors)
        }


    def correlated_pairs(self, threshold: float | None = None) -> list[tuple[str, str, float]]:
        """Parameter pairs whose estimates correlate beyond *threshold* in magnitude.

        Parameters
        ----------
        threshold : float, optional
            Defaults to :attr:`CORRELATION_THRESHOLD`.

        Returns
        -------
        list of (str, str, float)
            ``(name_i, name_j, r)`` with ``i < j``, strongest first.
        """
        if threshold is None:
            threshold = self.CORRELATION_THRESHOLD
        i, j = np.triu_indices(len(self.param_names), k=1)
        r = self.correlation[i, j]
        hit = np.abs(np.nan_to_num(r)) > threshold
        pairs = [
            (self.param_names[a], self.param_names[b], float(c))
            for a, b, c in zip(i[hit], j[hit], r[hit])
        ]
        return sorted(pairs, key=lambda p: -abs(p[2]))


    @property
    def conditioning(self) -> str:
        """Verbal grade of :attr:`condition_number`."""
        if self.condition_number < 1e3:
            return "well conditioned"
        if self.condition_number < 1e6:
            return "moderately conditioned"
        return "ill conditioned, some parameter directions are barely identified"


    # DISPLAY ===========================================================================

    def display(self) -> None:
        """Print estimates with standard errors, conditioning and confounded pairs."""
        W = 72
        line = "=" * W
        rule = "-" * W

        print(line)
        print("  Precision of the estimates (observed information)")
        print(line)

        print(f"  {'Parameter':<22} {'Estimate':>12} {'SE':>12} {'SE/|est|':>10}  {'':>6}")
        print(rule)
        for name, value, se in zip(self.param_names, self.param_values, self.std_errors):
            if np.isfinite(se) and abs(value) > 1e-15:
                rel = f"{se / abs(value):.3f}"
            else:
                rel = "-"
            flag = "bound" if name in self.at_bounds else ""
            print(f"  {name:<22} {value:>12.4g} {se:>12.4g} {rel:>10}  {flag:>6}")
        print(rule)

        print(f"\n  Condition number {self.condition_number:.3g}: {self.conditioning}")

        pairs = self.correlated_pairs()
        if pairs:
            print(f"  Confounded estimates (|r| > {self.CORRELATION_THRESHOLD:.2f}):")
            for a, b, r in pairs:
                print(f"    {a} / {b}  r = {r:+.3f}")
        else:
            print(f"  No pair of estimates has |r| > {self.CORRELATION_THRESHOLD:.2f}")
        print(line)
