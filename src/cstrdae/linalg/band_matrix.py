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
Band Matrix

Row-wise band storage: every row keeps ``lower + 1 + upper`` slots, slot
``lower + k`` holding the element in column ``row + k``. Slots whose column
falls outside the matrix exist but are treated as zero, which lets the AD
extraction routines write whole rows without bounds checks.

Examples
--------
>>> mat = BandMatrix(3, lower_bandwidth=1, upper_bandwidth=1)
>>> mat.set_centered(1, -1, 2.0)     # element (1, 0)
>>> mat.centered(1, -1)
2.0
>>> mat.to_dense()[1, 0]
2.0
"""

from typing import Optional

import numpy as np
import scipy.linalg


class BandMatrix:
    """
    Square band matrix with given lower and upper bandwidths.

    Parameters
    ----------
    rows : int
        Number of rows (and columns)
    lower_bandwidth : int
        Number of subdiagonals
    upper_bandwidth : int
        Number of superdiagonals
    """

    def __init__(self, rows: int = 0, lower_bandwidth: int = 0, upper_bandwidth: int = 0):
        self.resize(rows, lower_bandwidth, upper_bandwidth)

    def resize(self, rows: int, lower_bandwidth: int, upper_bandwidth: int):
        if rows < 0 or lower_bandwidth < 0 or upper_bandwidth < 0:
            raise ValueError(
                f"Invalid band matrix shape: rows={rows}, lower={lower_bandwidth}, upper={upper_bandwidth}"
            )
        self._lower = lower_bandwidth
        self._upper = upper_bandwidth
        self._data = np.zeros((rows, lower_bandwidth + 1 + upper_bandwidth))

    @property
    def rows(self) -> int:
        return self._data.shape[0]

    @property
    def lower_bandwidth(self) -> int:
        return self._lower

    @property
    def upper_bandwidth(self) -> int:
        return self._upper

    @property
    def stride(self) -> int:
        return self._lower + 1 + self._upper

    @property
    def data(self) -> np.ndarray:
        """Row-wise band storage of shape (rows, stride)."""
        return self._data

    def in_range(self, row: int, diag: int) -> bool:
        """True if (row, row + diag) lies inside the matrix."""
        col = row + diag
        return 0 <= col < self.rows

    def centered(self, row: int, diag: int) -> float:
        """Element (row, row + diag); diag in [-lower, upper]."""
        return float(self._data[row, self._lower + diag])

    def set_centered(self, row: int, diag: int, value: float):
        self._data[row, self._lower + diag] = value

    def set_all(self, value: float):
        self._data.fill(value)

    def to_dense(self) -> np.ndarray:
        n = self.rows
        dense = np.zeros((n, n))
        for row in range(n):
            for diag in range(-self._lower, self._upper + 1):
                if self.in_range(row, diag):
                    dense[row, row + diag] = self._data[row, self._lower + diag]
        return dense

    def multiply_vector(
        self, x: np.ndarray, alpha: float = 1.0, beta: float = 0.0, out: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """Compute out := alpha * A x + beta * out (new vector if out is None)."""
        product = self.to_dense() @ np.asarray(x, dtype=float)
        if out is None:
            return alpha * product
        out[:] = alpha * product if beta == 0.0 else alpha * product + beta * out
        return out

    def to_lapack(self) -> np.ndarray:
        """Diagonal-ordered storage as expected by scipy.linalg.solve_banded."""
        n = self.rows
        ab = np.zeros((self.stride, n))
        for row in range(n):
            for diag in range(-self._lower, self._upper + 1):
                if self.in_range(row, diag):
                    col = row + diag
                    ab[self._upper + row - col, col] = self._data[row, self._lower + diag]
        return ab

    def solve(self, rhs: np.ndarray) -> bool:
        """Solve A x = rhs in place; False if the matrix is singular."""
        try:
            rhs[:] = scipy.linalg.solve_banded((self._lower, self._upper), self.to_lapack(), rhs)
        except np.linalg.LinAlgError:
            return False
        return True

    def __repr__(self) -> str:
        return f"BandMatrix(rows={self.rows}, lower={self._lower}, upper={self._upper})"
