#########################################################################################
##
##                          ESTIMATION PARAMETER DECLARATION
##                                 (parameters.py)
##
##                                Kevin McBride 2026
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import warnings
from typing import Callable, Iterable, Iterator

import numpy as np


__all__ = [
    "Parameter",
    "FreeParameter",
    "ParameterSet",
]


# PARAMETER DECLARATION =================================================================

class Parameter:
    """Named scalar model parameter with box bounds.

    Optional transforms allow the optimizer to work in an unconstrained space
    while the model sees a meaningful value (e.g. ``np.exp`` to enforce
    positivity).

    Parameters
    ----------
    name : str
        Parameter identifier; matches the labels used in matrix declarations.
    value : float
        Initial value in optimizer space.
    bounds : tuple[float, float]
        Lower / upper bounds in optimizer space; ``±np.inf`` for none.
    transform : callable, optional
        Applied when the parameter is read: ``model_value = transform(optimizer_value)``.

    Notes
    -----
    Calling a ``Parameter`` instance (``p()``) returns the model-space value
    after the optional transform.  ``p.value`` always returns the optimizer-space
    value.  Objective evaluations never read ``Parameter`` objects; they work
    on a snapshot vector, see :meth:`ParameterSet.vector`.

    Example
    -------
    .. code-block:: python

        b = Parameter("b_y", value=-0.2, bounds=(-1, 0))
        b()        # -0.2

        s = Parameter("log_v", value=0.0, transform=np.exp)
        s()        # 1.0
        s.value    # 0.0
    """

    def __init__(
        self,
        name: str,
        value: float = 1.0,
        bounds: tuple[float, float] = (-np.inf, np.inf),
        transform: Callable[[float], float] | None = None,
    ):
        self.name = str(name)
        self.transform = transform

        lo, hi = (float(bounds[0]), float(bounds[1]))
        if np.isnan(lo) or np.isnan(hi):
            raise ValueError(f"Parameter '{name}': bounds must not be NaN")
        if lo > hi:
            raise ValueError(
                f"Parameter '{name}': lower bound {lo} > upper bound {hi}"
            )
        self.bounds = (lo, hi)

        if float(value) < lo:
            warnings.warn(
                f"Parameter '{name}': initial value {value} < lower bound {lo}",
                UserWarning,
                stacklevel=2,
            )
        if float(value) > hi:
            warnings.warn(
                f"Parameter '{name}': initial value {value} > upper bound {hi}",
                UserWarning,
                stacklevel=2,
            )

        self.set(value)


    @property
    def value(self) -> float:
        """Current optimizer-space value."""
        return self._value


    @value.setter
    def value(self, new_value: float) -> None:
        self.set(new_value)


    @property
    def lower(self) -> float:
        return self.bounds[0]


    @property
    def upper(self) -> float:
        return self.bounds[1]


    @property
    def is_bounded(self) -> bool:
        """True if at least one bound is finite."""
        return bool(np.isfinite(self.bounds[0]) or np.isfinite(self.bounds[1]))


    def __call__(self) -> float:
        """Return the model-space value (after optional transform)."""
        return self.to_model(self._value)


    def to_model(self, x: float) -> float:
        """Map an optimizer-space value to model space."""
        return float(self.transform(x)) if self.transform is not None else float(x)


    def set(self, value: float) -> None:
        """Set the optimizer-space value."""
        value = float(value)
        if not np.isfinite(value):
            raise ValueError(f"Parameter '{self.name}': value must be finite, got {value}")
        self._value = value


    def __repr__(self) -> str:
        return (
            f"Parameter(name={self.name!r}, value={self._value}, "
            f"bounds={self.bounds})"
        )


def FreeParameter(name, **kwargs):
    """Factory for :class:`Parameter` objects.

    Parameters
    ----------
    name : str
        Parameter identifier.
    **kwargs
        Forwarded to :class:`Parameter`.

    Returns
    -------
    Parameter
    """
    return Parameter(name=name, **kwargs)


# PARAMETER SET =========================================================================

class ParameterSet:
    """Ordered collection of uniquely named parameters.

    The order fixes the layout of the optimizer vector ``theta``.

    Parameters
    ----------
    parameters : iterable of Parameter
        Parameters in vector order.
    """

    def __init__(self, parameters: Iterable[Parameter] = ()):
        self._params: list[Parameter] = []
        self._index: dict[str, int] = {}
        for p in parameters:
            self.add(p)


    def add(self, parameter: Parameter) -> "ParameterSet":
        """Append a parameter; names must be unique."""
        if not isinstance(parameter, Parameter):
            raise TypeError(
                f"ParameterSet expects Parameter, got {type(parameter).__name__}"
            )
        if parameter.name in self._index:
            raise ValueError(f"duplicate parameter name '{parameter.name}'")
        self._index[parameter.name] = len(self._params)
        self._params.append(parameter)
        return self


    def __len__(self) -> int:
        return len(self._params)


    def __iter__(self) -> Iterator[Parameter]:
        return iter(self._params)


    def __getitem__(self, key) -> Parameter:
        if isinstance(key, str):
            return self._params[self._index[key]]
        return self._params[key]


    def __contains__(self, name: str) -> bool:
        return name in self._index


    def index(self, name: str) -> int:
        """Position of parameter *name* in the optimizer vector."""
        return self._index[name]


    @property
    def names(self) -> list[str]:
        return [p.name for p in self._params]


    @property
    def lower(self) -> np.ndarray:
        return np.array([p.bounds[0] for p in self._params], dtype=float)


    @property
    def upper(self) -> np.ndarray:
        return np.array([p.bounds[1] for p in self._params], dtype=float)


    def vector(self) -> np.ndarray:
        """Read-only snapshot of the current optimizer-space values."""
        x = np.array([p.value for p in self._params], dtype=float)
        x.setflags(write=False)
        return x


    def to_model(self, x: np.ndarray) -> np.ndarray:
        """Map an optimizer-space vector to model-space values."""
        x_arr = self.check(x)
        return np.array(
            [p.to_model(x_arr[i]) for i, p in enumerate(self._params)], dtype=float
        )


    def check(self, x) -> np.ndarray:
        """Validate the length of *x* and return it as a flat float array."""
        x_arr = np.asarray(x, dtype=float).reshape(-1)
        if x_arr.size != len(self._params):
            raise ValueError(f"Expected x of length {len(self._params)}, got {x_arr.size}")
        return x_arr


    def apply(self, x: np.ndarray) -> None:
        """Write an optimizer-space vector back into the parameters."""
        x_arr = self.check(x)
        for p, xi in zip(self._params, x_arr):
            p.set(float(xi))
