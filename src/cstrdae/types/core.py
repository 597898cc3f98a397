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
Core Types

Array aliases and result dictionaries shared across the package.

Shape Conventions:
- State vector: (num_dofs,) laid out as [c_in, c, q, V]
- Residual vector: same shape as the state vector
- AD derivative matrix: (n, n_dirs), column d holds AD direction d
"""

from typing import Any, Dict, Union

import numpy as np
from typing_extensions import TypedDict

ArrayLike = Union[np.ndarray, "jax.Array"]

StateVector = np.ndarray
"""
Full state vector y (or its time derivative ẏ) of a unit operation.

Layout for the stirred tank:
    [c_in (n_comp), c (n_comp), q (stride_bound), V (1)]
"""

ResidualVector = np.ndarray
"""Residual F(t, y, ẏ, p) with the same layout as the state vector."""

ScalarLike = Union[float, int, np.floating]


class ModelStats(TypedDict):
    """
    Evaluation counters of a unit operation model.

    Attributes
    ----------
    residual_calls : int
        Residual evaluations (all entry points)
    jacobian_updates : int
        Residual evaluations that also refreshed the Jacobian
    ad_evaluations : int
        Residual evaluations carried out with AD types
    factorizations : int
        Newton matrix factorizations performed by linear_solve
    last_jacobian_deviation : float
        Analytic vs AD Jacobian discrepancy of the last check (NaN if none)
    max_jacobian_deviation : float
        Largest discrepancy observed since the last reset (NaN if none)
    """

    residual_calls: int
    jacobian_updates: int
    ad_evaluations: int
    factorizations: int
    last_jacobian_deviation: float
    max_jacobian_deviation: float


ParameterValues = Dict[Any, float]
