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
Sparse Matrix in Coordinate List Format

Intermediate format for assembling a sparse matrix once: storage is a list of
(row, column, value) triples with a fixed capacity. Lookups are linear in the
number of stored elements, so this is meant for assembly, not for inner loops.
Convert to a compressed format with to_scipy() once assembly is done.

Duplicate (row, column) pairs are allowed (add_element() never checks) and
their values accumulate in every matrix-vector operation.

Examples
--------
>>> mat = SparseMatrix(3)
>>> mat.add_element(0, 1, 2.0)
>>> mat[1, 0] += 4.0          # lookup, appends a zero entry first
>>> out = np.zeros(2)
>>> mat.multiply_add(np.array([1.0, 1.0]), out)
>>> out
array([2., 4.])
"""

import numpy as np
import scipy.sparse


class SparseMatrix:
    """
    Capacity-bounded coordinate list (COO) matrix builder.

    Parameters
    ----------
    nnz : int
        Capacity, that is the maximum number of stored elements. A matrix
        created with capacity 0 has to be resized before it is populated.
    """

    def __init__(self, nnz: int = 0):
        self._rows = np.zeros(0, dtype=np.intp)
        self._cols = np.zeros(0, dtype=np.intp)
        self._values = np.zeros(0)
        self._cur_idx = 0
        self.resize(nnz)

    # ========================================================================
    # Capacity management
    # ========================================================================

    def clear(self):
        """Remove all elements, keeping the capacity."""
        self._cur_idx = 0

    def resize(self, nnz: int):
        """Reset the capacity; all previous content is lost."""
        if nnz < 0:
            raise ValueError(f"Capacity must be non-negative, got {nnz}")
        self._rows = np.zeros(nnz, dtype=np.intp)
        self._cols = np.zeros(nnz, dtype=np.intp)
        self._values = np.zeros(nnz)
        self._cur_idx = 0

    @property
    def capacity(self) -> int:
        return self._rows.shape[0]

    @property
    def num_non_zero(self) -> int:
        """Number of stored elements (duplicates counted separately)."""
        return self._cur_idx

    # ========================================================================
    # Element access
    # ========================================================================

    def _append(self, row: int, col: int, value: float) -> int:
        if self._cur_idx >= self.capacity:
            raise IndexError(
                f"SparseMatrix capacity ({self.capacity}) exhausted while adding element ({row}, {col})"
            )
        idx = self._cur_idx
        self._rows[idx] = row
        self._cols[idx] = col
        self._values[idx] = value
        self._cur_idx += 1
        return idx

    def add_element(self, row: int, col: int, value: float):
        """Append a new element without checking for an existing one."""
        self._append(row, col, value)

    def _find(self, row: int, col: int) -> int:
        for idx in range(self._cur_idx):
            if self._rows[idx] == row and self._cols[idx] == col:
                return idx
        return -1

    def __getitem__(self, pos) -> float:
        """
        Value at (row, col); an absent element is appended with value 0.

        Use get() for a read that never modifies the matrix.
        """
        row, col = pos
        idx = self._find(row, col)
        if idx < 0:
            idx = self._append(row, col, 0.0)
        return float(self._values[idx])

    def __setitem__(self, pos, value: float):
        row, col = pos
        idx = self._find(row, col)
        if idx < 0:
            self._append(row, col, value)
        else:
            self._values[idx] = value

    def get(self, row: int, col: int) -> float:
        """Value of the first stored element at (row, col), or 0."""
        idx = self._find(row, col)
        return 0.0 if idx < 0 else float(self._values[idx])

    @property
    def rows(self) -> np.ndarray:
        return self._rows[: self._cur_idx]

    @property
    def cols(self) -> np.ndarray:
        return self._cols[: self._cur_idx]

    @property
    def values(self) -> np.ndarray:
        return self._values[: self._cur_idx]

    # ========================================================================
    # Matrix-vector operations
    # ========================================================================

    def multiply_vector(self, x: np.ndarray, alpha: float, beta: float, out: np.ndarray):
        """Compute out := alpha * A x + beta * out."""
        if beta == 0.0:
            out[:] = 0.0
        else:
            out *= beta
        for idx in range(self._cur_idx):
            out[self._rows[idx]] += alpha * self._values[idx] * x[self._cols[idx]]

    def multiply_add(self, x: np.ndarray, out: np.ndarray):
        """Compute out := out + A x."""
        for idx in range(self._cur_idx):
            out[self._rows[idx]] += self._values[idx] * x[self._cols[idx]]

    def multiply_subtract(self, x: np.ndarray, out: np.ndarray):
        """Compute out := out - A x."""
        for idx in range(self._cur_idx):
            out[self._rows[idx]] -= self._values[idx] * x[self._cols[idx]]

    # ========================================================================
    # Conversion
    # ========================================================================

    def to_scipy(self, shape=None) -> scipy.sparse.csr_matrix:
        """
        Compressed sparse row copy; duplicate entries are summed.

        The shape defaults to the smallest one holding all stored elements.
        """
        if shape is None:
            n_rows = int(self.rows.max()) + 1 if self._cur_idx else 0
            n_cols = int(self.cols.max()) + 1 if self._cur_idx else 0
            shape = (n_rows, n_cols)
        coo = scipy.sparse.coo_matrix((self.values, (self.rows, self.cols)), shape=shape)
        return coo.tocsr()

    def __repr__(self) -> str:
        return f"SparseMatrix(nnz={self._cur_idx}, capacity={self.capacity})"

    def __str__(self) -> str:
        rows = "[" + ",".join(str(int(r)) for r in self.rows) + "]"
        cols = "[" + ",".join(str(int(c)) for c in self.cols) + "]"
        vals = "[" + ",".join(repr(float(v)) for v in self.values) + "]"
        return f"rows = {rows};\ncols = {cols};\nvals = {vals};"
