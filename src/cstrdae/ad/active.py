# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Dual-Valued Numbers for Forward-Mode AD

JAX carries the arithmetic: a residual written with ``jax.numpy`` is pushed
forward along every AD direction at once with ``jax.vmap(jax.jvp)``. This
module holds the containers that store seeds and results between those
evaluations:

- ActiveScalar: a parameter value plus its AD seeds (sparse, per direction)
- ADVector: values (n,) and derivatives (n, n_dirs) of a vector of AD values
- evaluate_directional: one primal evaluation plus all directional derivatives

Directions are shared by all users of one ADVector: the first
``ad_dir_offset`` directions belong to parameter sensitivities, the
following ones to Jacobian seeds.

Examples
--------
>>> y = ADVector.from_values(np.array([1.0, 2.0]), n_dirs=2)
>>> y.derivatives[:] = np.eye(2)
>>> f = lambda v: v ** 2
>>> val, dval = evaluate_directional(f, (y.values,), (y.derivatives.T,))
>>> dval
array([[2., 0.],
       [0., 4.]])
"""

from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

# Jacobian checks compare against double precision closed forms
jax.config.update("jax_enable_x64", True)


class ActiveScalar:
    """
    Scalar parameter value carrying AD seeds.

    Parameters of the model are stored as ActiveScalar objects so that the
    model can hand out references to them (the sensitive-parameter registry
    keeps such references). Identity, not value, defines equality.

    Parameters
    ----------
    value : float
        Primal value

    Examples
    --------
    >>> p = ActiveScalar(0.5)
    >>> p.set_ad_value(3, 1.0)
    >>> p.tangent(4)
    array([0., 0., 0., 1.])
    >>> float(p)
    0.5
    """

    __slots__ = ("_value", "_ad")

    def __init__(self, value: float = 0.0):
        self._value = float(value)
        self._ad: Dict[int, float] = {}

    @property
    def value(self) -> float:
        return self._value

    def set_value(self, value: float):
        """Set the primal value, keeping the seeds."""
        self._value = float(value)

    def get_ad_value(self, direction: int) -> float:
        return self._ad.get(direction, 0.0)

    def set_ad_value(self, direction: int, value: float):
        if value == 0.0:
            self._ad.pop(direction, None)
        else:
            self._ad[direction] = float(value)

    def clear_ad_values(self):
        """Remove all seeds."""
        self._ad.clear()

    @property
    def ad_directions(self) -> Tuple[int, ...]:
        """Directions with a nonzero seed, ascending."""
        return tuple(sorted(self._ad))

    def tangent(self, n_dirs: int) -> np.ndarray:
        """Dense seed vector of length n_dirs (seeds beyond n_dirs are dropped)."""
        out = np.zeros(n_dirs)
        for direction, value in self._ad.items():
            if direction < n_dirs:
                out[direction] = value
        return out

    def __float__(self) -> float:
        return self._value

    def __repr__(self) -> str:
        return f"ActiveScalar({self._value!r}, ad={self._ad!r})"


def as_active(value: Any) -> ActiveScalar:
    """Wrap a plain number; ActiveScalar instances are returned as-is."""
    if isinstance(value, ActiveScalar):
        return value
    return ActiveScalar(float(value))


class ADVector:
    """
    Vector of AD values in structure-of-arrays form.

    Attributes
    ----------
    values : np.ndarray
        Primal values, shape (n,)
    derivatives : np.ndarray
        Directional derivatives, shape (n, n_dirs)
    """

    def __init__(self, size: int, n_dirs: int):
        if size < 0 or n_dirs < 0:
            raise ValueError(f"Invalid ADVector shape ({size}, {n_dirs})")
        self.values = np.zeros(size)
        self.derivatives = np.zeros((size, n_dirs))

    @classmethod
    def from_values(cls, values: Sequence[float], n_dirs: int) -> "ADVector":
        values = np.asarray(values, dtype=float)
        vec = cls(values.shape[0], n_dirs)
        vec.values[:] = values
        return vec

    @property
    def n_dirs(self) -> int:
        return self.derivatives.shape[1]

    def __len__(self) -> int:
        return self.values.shape[0]

    def segment(self, start: int, stop: Optional[int] = None) -> "ADVector":
        """View of entries start..stop sharing storage with this vector."""
        view = ADVector.__new__(ADVector)
        view.values = self.values[start:stop]
        view.derivatives = self.derivatives[start:stop]
        return view

    def get_ad_value(self, index: int, direction: int) -> float:
        return float(self.derivatives[index, direction])

    def set_ad_value(self, index: int, direction: int, value: float):
        self.derivatives[index, direction] = value

    def __repr__(self) -> str:
        return f"ADVector(size={len(self)}, n_dirs={self.n_dirs})"


def _as_float64(tree):
    return jax.tree_util.tree_map(lambda a: jnp.asarray(a, dtype=jnp.float64), tree)


def evaluate_directional(
    fun: Callable[..., Any],
    primals: Tuple[Any, ...],
    tangents: Tuple[Any, ...],
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Evaluate ``fun`` and all of its directional derivatives.

    Args:
        fun: Pure function of the primals returning a 1D array
        primals: Positional arguments of ``fun`` (pytrees of arrays/scalars)
        tangents: Matching pytrees whose leaves carry a leading axis of
            length n_dirs; slice d is the seed of AD direction d

    Returns:
        (values, derivatives) with shapes (n,) and (n, n_dirs)
    """
    primals = _as_float64(tuple(primals))
    tangents = _as_float64(tuple(tangents))

    values = np.asarray(fun(*primals), dtype=float)

    leaves = jax.tree_util.tree_leaves(tangents)
    n_dirs = leaves[0].shape[0] if leaves else 0
    if n_dirs == 0:
        return values, np.zeros((values.shape[0], 0))

    def push_forward(*tangent):
        return jax.jvp(fun, primals, tangent)[1]

    derivatives = jax.vmap(push_forward)(*tangents)
    return values, np.asarray(derivatives, dtype=float).T
