#########################################################################################
##
##                     CONTINUOUS-TO-DISCRETE STATE TRANSITION
##                              (solvers/transition.py)
##
##                                Kevin McBride 2026
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import NamedTuple

import numpy as np
from scipy.linalg import expm


# RESULT ================================================================================

class DiscreteTransition(NamedTuple):
    """Exact discretisation of the linear dynamics over one interval."""

    Phi: np.ndarray   # state transition exp(A dt)
    Qd: np.ndarray    # accumulated process-noise covariance
    c: np.ndarray     # accumulated constant-input effect, shape (n,)


# CLASS =================================================================================

class ContinuousTimeTransition:

    """Discretise ``dx/dt = A x + B u + w``, ``Cov(w) = Q``, over arbitrary intervals.

    For an elapsed time ``dt`` it returns

    .. math::
        \\Phi(dt) = e^{A\\,dt}, \\qquad
        Q_d(dt) = \\int_0^{dt} e^{As} Q e^{A^\\top s}\\, ds, \\qquad
        c(dt) = \\int_0^{dt} e^{As}\\, ds \\; B u

    ``Q_d`` uses the Van Loan block-matrix exponential and ``c`` an augmented
    exponential, so neither needs ``A`` to be invertible (the growth model's
    drift matrix is singular).

    Parameters
    ----------
    A : array_like
        Drift matrix, shape (n, n).
    Q : array_like, optional
        Process-noise covariance, shape (n, n); zero when omitted.
    B : array_like, optional
        Input matrix, shape (n, k).
    u : array_like, optional
        Constant input vector, shape (k,) or (k, 1).

    Notes
    -----
    Results are memoised per ``dt``. An instance is meant to live for a single
    model evaluation: build a new one whenever ``A`` or ``Q`` change.
    """

    def __init__(self, A, Q=None, B=None, u=None):
        A_arr = np.asarray(A, dtype=float)
        if A_arr.ndim != 2 or A_arr.shape[0] != A_arr.shape[1]:
            raise ValueError(f"drift matrix must be square, got shape {A_arr.shape}")
        n = A_arr.shape[0]

        Q_arr = np.zeros((n, n)) if Q is None else np.asarray(Q, dtype=float)
        if Q_arr.shape != (n, n):
            raise ValueError(f"process-noise matrix must have shape {(n, n)}, got {Q_arr.shape}")

        if B is None or u is None:
            bu = np.zeros(n)
        else:
            bu = np.asarray(B, dtype=float) @ np.asarray(u, dtype=float).reshape(-1)

        self.A = A_arr
        self.Q = Q_arr
        self.bu = bu.reshape(-1)
        self.n = n

        self._has_noise = bool(np.any(Q_arr != 0.0))
        self._has_input = bool(np.any(self.bu != 0.0))
        self._cache: dict[float, DiscreteTransition] = {}


    def _identity(self) -> DiscreteTransition:
        return DiscreteTransition(np.eye(self.n), np.zeros((self.n, self.n)), np.zeros(self.n))


    def _noise_covariance(self, dt: float) -> tuple[np.ndarray, np.ndarray]:
        """Van Loan: expm([[-A, Q], [0, A^T]] dt) = [[., F12], [0, F22]]."""
        n = self.n
        M = np.zeros((2 * n, 2 * n))
        M[:n, :n] = -self.A
        M[:n, n:] = self.Q
        M[n:, n:] = self.A.T
        F = expm(M * dt)

        Phi = F[n:, n:].T
        Qd = Phi @ F[:n, n:]
        return Phi, 0.5 * (Qd + Qd.T)


    def _input_effect(self, dt: float) -> np.ndarray:
        """expm([[A, Bu], [0, 0]] dt) carries the integrated input in its last column."""
        n = self.n
        M = np.zeros((n + 1, n + 1))
        M[:n, :n] = self.A
        M[:n, n] = self.bu
        return expm(M * dt)[:n, n]


    def discretize(self, dt: float) -> DiscreteTransition:
        """Return ``(Phi, Qd, c)`` for the elapsed interval *dt*.

        Parameters
        ----------
        dt : float
            Elapsed time, ``dt >= 0``. ``dt == 0`` returns the identity
            transition with zero noise and input effect.

        Returns
        -------
        DiscreteTransition
        """
        dt = float(dt)
        if not np.isfinite(dt) or dt < 0.0:
            raise ValueError(f"elapsed interval must be finite and >= 0, got {dt}")

        cached = self._cache.get(dt)
        if cached is not None:
            return cached

        if dt == 0.0:
            result = self._identity()
        else:
            if self._has_noise:
                Phi, Qd = self._noise_covariance(dt)
            else:
                Phi, Qd = expm(self.A * dt), np.zeros((self.n, self.n))

            c = self._input_effect(dt) if self._has_input else np.zeros(self.n)
            result = DiscreteTransition(Phi, Qd, c)

        for arr in result:
            arr.setflags(write=False)
        self._cache[dt] = result
        return result


    __call__ = discretize
