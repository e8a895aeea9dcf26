#########################################################################################
##
##                   CONTINUOUS-TIME STATE-SPACE MODEL DECLARATION
##                                   (model.py)
##
##                                Kevin McBride 2026
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Iterable, NamedTuple

import numpy as np

from .constants import GROWTH_DEFAULTS
from .parameters import Parameter, ParameterSet


__all__ = [
    "MatrixSpec",
    "StateSpaceMatrices",
    "ModelSpec",
    "growth_model",
]


# MATRIX DECLARATION ====================================================================

class MatrixSpec:
    """Structure of one model matrix: fixed values and free-parameter labels.

    Parameters
    ----------
    name : str
        Matrix name (``"A"``, ``"P0"``, ...).
    values : array_like
        Starting / fixed values; 1D input is treated as a column vector.
    labels : array_like of (str or None), optional
        Same shape as ``values``. ``None`` marks a fixed entry, a string names
        the free parameter occupying that entry. Entries sharing a label are
        constrained equal.
    symmetric : bool
        Require a symmetric value and label pattern.

    Notes
    -----
    The values of free entries are only placeholders; they are overwritten
    from the parameter vector on every :meth:`ModelSpec.evaluate` call.
    """

    def __init__(self, name: str, values, labels=None, symmetric: bool = False):
        vals = np.array(values, dtype=float)
        if vals.ndim == 1:
            vals = vals.reshape(-1, 1)
        if vals.ndim != 2:
            raise ValueError(f"MatrixSpec '{name}': values must be 1D or 2D")

        if labels is None:
            labs = np.full(vals.shape, None, dtype=object)
        else:
            labs = np.array(labels, dtype=object)
            if labs.ndim == 1:
                labs = labs.reshape(-1, 1)
            if labs.shape != vals.shape:
                raise ValueError(
                    f"MatrixSpec '{name}': labels shape {labs.shape} "
                    f"does not match values shape {vals.shape}"
                )

        if symmetric:
            if vals.shape[0] != vals.shape[1]:
                raise ValueError(f"MatrixSpec '{name}': symmetric matrix must be square")
            fixed = np.vectorize(lambda lab: lab is None, otypes=[bool])(labs)
            if np.any(labs != labs.T) or not np.allclose(
                np.where(fixed, vals, 0.0), np.where(fixed, vals, 0.0).T
            ):
                raise ValueError(f"MatrixSpec '{name}': declared symmetric but is not")

        vals.setflags(write=False)
        labs.setflags(write=False)

        self.name = name
        self.values = vals
        self.labels = labs
        self.symmetric = bool(symmetric)


    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape


    @property
    def free(self) -> np.ndarray:
        """Boolean mask of free entries."""
        return np.vectorize(lambda lab: lab is not None, otypes=[bool])(self.labels)


    @property
    def free_labels(self) -> list[str]:
        """Distinct free-parameter labels in row-major order of first use."""
        seen: list[str] = []
        for lab in self.labels.ravel():
            if lab is not None and lab not in seen:
                seen.append(lab)
        return seen


    def __repr__(self) -> str:
        return f"MatrixSpec(name={self.name!r}, shape={self.shape}, free={self.free_labels})"


class StateSpaceMatrices(NamedTuple):
    """Concrete matrices of one model evaluation (all arrays read-only)."""

    A: np.ndarray
    B: np.ndarray
    C: np.ndarray
    D: np.ndarray
    Q: np.ndarray
    R: np.ndarray
    x0: np.ndarray
    P0: np.ndarray
    u: np.ndarray


# MODEL =================================================================================

class ModelSpec:
    """Linear continuous-time state-space model template.

    Dynamics and measurement::

        dx/dt = A x + B u,                 process noise Q
        y(t)  = C x + D u + e,     e ~ N(0, R)
        x(t0) ~ N(x0, P0)

    The structure (which entries are free, which are fixed) is declared once
    and never changes; :meth:`evaluate` maps a parameter vector to concrete
    matrices and is a pure function, so one evaluation can be shared
    read-only by every subject's filter run.

    Parameters
    ----------
    A, C, R, x0, P0 : MatrixSpec or array_like
        Drift, loading, measurement-noise, initial mean and initial
        covariance. Plain arrays are fully fixed.
    parameters : iterable of Parameter or ParameterSet
        Declarations for every label used in the matrices.
    B, D, Q, u : MatrixSpec or array_like, optional
        Input effects on the states / observations, process-noise
        covariance, and input vector. Zero when omitted.
    time_origin : float
        Time at which ``x0`` / ``P0`` apply.

    Example
    -------
    .. code-block:: python

        model = ModelSpec(
            A=MatrixSpec("A", [[-0.5]], [["a"]]),
            C=np.eye(1), R=MatrixSpec("R", [[1.0]], [["r"]]),
            x0=np.zeros(1), P0=np.eye(1),
            parameters=[Parameter("a", -0.5, (-2, 0)), Parameter("r", 1.0, (0, np.inf))],
        )
        mats = model.evaluate(model.x0)
    """

    MATRIX_NAMES = ("A", "B", "C", "D", "Q", "R", "x0", "P0", "u")
    _SYMMETRIC = ("Q", "R", "P0")

    def __init__(
        self,
        *,
        A,
        C,
        R,
        x0,
        P0,
        parameters: Iterable[Parameter] | ParameterSet,
        B=None,
        D=None,
        Q=None,
        u=None,
        time_origin: float = 0.0,
    ):
        self.parameters = (
            parameters if isinstance(parameters, ParameterSet) else ParameterSet(parameters)
        )
        self.time_origin = float(time_origin)
        if not np.isfinite(self.time_origin):
            raise ValueError("time_origin must be finite")

        A_spec = self._as_spec("A", A)
        C_spec = self._as_spec("C", C)
        n = A_spec.shape[0]
        m = C_spec.shape[0]
        k = self._as_spec("u", u).shape[0] if u is not None else 1

        specs = {
            "A": A_spec,
            "B": self._as_spec("B", B if B is not None else np.zeros((n, k))),
            "C": C_spec,
            "D": self._as_spec("D", D if D is not None else np.zeros((m, k))),
            "Q": self._as_spec("Q", Q if Q is not None else np.zeros((n, n))),
            "R": self._as_spec("R", R),
            "x0": self._as_spec("x0", x0),
            "P0": self._as_spec("P0", P0),
            "u": self._as_spec("u", u if u is not None else np.zeros((k, 1))),
        }

        expected = {
            "A": (n, n), "B": (n, k), "C": (m, n), "D": (m, k), "Q": (n, n),
            "R": (m, m), "x0": (n, 1), "P0": (n, n), "u": (k, 1),
        }
        for name, spec in specs.items():
            if spec.shape != expected[name]:
                raise ValueError(
                    f"ModelSpec: matrix '{name}' has shape {spec.shape}, "
                    f"expected {expected[name]}"
                )

        self.matrices: dict[str, MatrixSpec] = specs
        self.n_states = n
        self.n_observed = m
        self.n_inputs = k

        # (flat index, parameter index) pairs per matrix, resolved once
        used: set[str] = set()
        self._slots: dict[str, tuple[np.ndarray, np.ndarray]] = {}
        for name, spec in specs.items():
            flat_idx, par_idx = [], []
            for i, lab in enumerate(spec.labels.ravel()):
                if lab is None:
                    continue
                if lab not in self.parameters:
                    raise KeyError(
                        f"ModelSpec: matrix '{name}' uses undeclared parameter '{lab}'"
                    )
                flat_idx.append(i)
                par_idx.append(self.parameters.index(lab))
                used.add(lab)
            self._slots[name] = (np.array(flat_idx, dtype=int), np.array(par_idx, dtype=int))

        unused = [p for p in self.parameters.names if p not in used]
        if unused:
            raise ValueError(f"ModelSpec: parameters {unused} are not used by any matrix")


    def _as_spec(self, name: str, obj) -> MatrixSpec:
        if isinstance(obj, MatrixSpec):
            if name in self._SYMMETRIC and not obj.symmetric:
                return MatrixSpec(name, obj.values, obj.labels, symmetric=True)
            return obj
        return MatrixSpec(name, obj, symmetric=name in self._SYMMETRIC)


    # PROPERTIES ------------------------------------------------------------------------

    @property
    def parameter_names(self) -> list[str]:
        return self.parameters.names


    @property
    def x0(self) -> np.ndarray:
        """Current optimizer-space parameter vector (read-only snapshot)."""
        return self.parameters.vector()


    @property
    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        """``(lower, upper)`` bound arrays in optimizer space."""
        return self.parameters.lower, self.parameters.upper


    # EVALUATION ------------------------------------------------------------------------

    def evaluate(self, theta) -> StateSpaceMatrices:
        """Return the concrete matrices for the optimizer-space vector *theta*.

        Parameters
        ----------
        theta : array_like
            Parameter vector in the order of :attr:`parameter_names`.

        Returns
        -------
        StateSpaceMatrices
        """
        values = self.parameters.to_model(theta)

        out = {}
        for name, spec in self.matrices.items():
            mat = np.array(spec.values, dtype=float)
            flat_idx, par_idx = self._slots[name]
            if flat_idx.size:
                mat.reshape(-1)[flat_idx] = values[par_idx]
            if spec.symmetric:
                mat = 0.5 * (mat + mat.T)
            mat.setflags(write=False)
            out[name] = mat

        return StateSpaceMatrices(**out)


    def __repr__(self) -> str:
        return (
            f"ModelSpec(n_states={self.n_states}, n_observed={self.n_observed}, "
            f"parameters={self.parameter_names})"
        )


# GROWTH MODEL FACTORY ==================================================================

def growth_model(time_origin: float = 0.0, **overrides) -> ModelSpec:
    """Continuous-time intercept/slope growth model with proportional change.

    Two latent states, an intercept-like level ``yIn`` and a constant
    slope-like component ``ySl``, drive one observed variable::

        d yIn/dt = b_y * yIn + ySl
        d ySl/dt = 0
        y        = yIn + e,            e ~ N(0, MerY)

    with ``x0 = [yInMn, ySlMn]`` and ``P0 = [[yInV, yInSlCv], [yInSlCv, ySlV]]``.
    There are no process innovations (``Q = 0``).

    Parameters
    ----------
    time_origin : float
        Time at which the initial state distribution applies.
    **overrides
        Per-parameter starting value, or ``(value, (lower, upper))``, replacing
        the defaults ``b_y=-0.2 in [-1, 0]``, ``yInMn=12``, ``ySlMn=7``,
        ``yInV=25 >= 0``, ``yInSlCv=3``, ``ySlV=0.7 >= 0``, ``MerY=2 >= 0``.

    Returns
    -------
    ModelSpec
    """
    unknown = set(overrides) - set(GROWTH_DEFAULTS)
    if unknown:
        raise KeyError(f"growth_model: unknown parameter(s) {sorted(unknown)}")

    params = []
    for name, (value, bounds) in GROWTH_DEFAULTS.items():
        if name in overrides:
            spec = overrides[name]
            if isinstance(spec, tuple):
                value, bounds = spec
            else:
                value = spec
        params.append(Parameter(name, value=value, bounds=bounds))

    return ModelSpec(
        A=MatrixSpec("A", [[-0.2, 1.0], [0.0, 0.0]], [["b_y", None], [None, None]]),
        C=MatrixSpec("C", [[1.0, 0.0]]),
        R=MatrixSpec("R", [[2.0]], [["MerY"]], symmetric=True),
        x0=MatrixSpec("x0", [12.0, 7.0], ["yInMn", "ySlMn"]),
        P0=MatrixSpec(
            "P0",
            [[25.0, 3.0], [3.0, 0.7]],
            [["yInV", "yInSlCv"], ["yInSlCv", "ySlV"]],
            symmetric=True,
        ),
        parameters=params,
        time_origin=time_origin,
    )
