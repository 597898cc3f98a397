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
Dense Matrix with LU Factorization

Square or rectangular dense storage used for the Jacobian of lumped unit
operations. Factorization and solves are delegated to SciPy's LAPACK
wrappers; failures are reported as booleans so that callers can translate
them into solver status codes.

Examples
--------
>>> mat = DenseMatrix(2, 2)
>>> mat[0, 0] = 2.0
>>> mat[1, 1] = 4.0
>>> mat.factorize()
True
>>> rhs = np.array([2.0, 2.0])
>>> mat.solve(rhs)
True
>>> rhs
array([1. , 0.5])
"""

import warnings
from typing import Optional, Tuple

import numpy as np
import scipy.linalg
from scipy.linalg import LinAlgWarning


class DenseMatrix:
    """
    Row-major dense matrix.

    Element access uses ``mat[row, col]``. After factorize() the stored
    values are the LU factors until the matrix is written again through
    copy_from(), set_all() or resize().
    """

    def __init__(self, rows: int = 0, cols: int = 0):
        self._data = np.zeros((rows, cols))
        self._lu: Optional[Tuple[np.ndarray, np.ndarray]] = None

    # ========================================================================
    # Shape and element access
    # ========================================================================

    def resize(self, rows: int, cols: int):
        self._data = np.zeros((rows, cols))
        self._lu = None

    @property
    def rows(self) -> int:
        return self._data.shape[0]

    @property
    def columns(self) -> int:
        return self._data.shape[1]

    @property
    def data(self) -> np.ndarray:
        """Underlying array (not a copy)."""
        return self._data

    def __getitem__(self, index):
        return self._data[index]

    def __setitem__(self, index, value):
        self._data[index] = value
        self._lu = None

    def native(self, row: int, col: int) -> float:
        """Element (row, col) in native (row-major) addressing."""
        return float(self._data[row, col])

    def set_all(self, value: float):
        self._data.fill(value)
        self._lu = None

    def copy_from(self, other: "DenseMatrix"):
        if other.rows != self.rows or other.columns != self.columns:
            raise ValueError(
                f"Shape mismatch: cannot copy {other.rows}x{other.columns} "
                f"into {self.rows}x{self.columns}"
            )
        np.copyto(self._data, other._data)
        self._lu = None

    # ========================================================================
    # Arithmetic
    # ========================================================================

    def multiply_vector(
        self, x: np.ndarray, alpha: float = 1.0, beta: float = 0.0, out: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        Compute out := alpha * A x + beta * out.

        If ``out`` is None a new vector is returned (beta is ignored).
        """
        product = self._data @ np.asarray(x, dtype=float)
        if out is None:
            return alpha * product
        out[:] = alpha * product if beta == 0.0 else alpha * product + beta * out
        return out

    # ========================================================================
    # Factorization
    # ========================================================================

    def factorize(self) -> bool:
        """
        LU factorize in place with partial pivoting.

        Returns False if the matrix is (numerically exactly) singular or
        contains non-finite entries.
        """
        if self.rows != self.columns:
            raise ValueError(f"Cannot factorize non-square matrix {self.rows}x{self.columns}")
        if not np.all(np.isfinite(self._data)):
            self._lu = None
            return False

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", LinAlgWarning)
            lu, piv = scipy.linalg.lu_factor(self._data, check_finite=False)

        if np.any(np.diag(lu) == 0.0):
            self._lu = None
            return False

        self._data[:] = lu
        self._lu = (self._data, piv)
        return True

    @property
    def is_factorized(self) -> bool:
        return self._lu is not None

    def solve(self, rhs: np.ndarray) -> bool:
        """
        Solve A x = rhs in place using the factors from factorize().

        Returns False if the matrix has not been factorized successfully.
        """
        if self._lu is None:
            return False
        rhs[:] = scipy.linalg.lu_solve(self._lu, rhs, check_finite=False)
        return bool(np.all(np.isfinite(rhs)))

    def __repr__(self) -> str:
        return f"DenseMatrix({self.rows}x{self.columns}, factorized={self.is_factorized})"
