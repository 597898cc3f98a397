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
Unit tests for the coordinate list sparse matrix.

Tests cover:
1. Element insertion, lookup and capacity
2. Duplicate entries in matrix-vector operations
3. Resize and clear
4. Conversion to SciPy and string output
"""

import numpy as np
import pytest

from cstrdae.linalg import SparseMatrix


@pytest.fixture
def small_matrix():
    """[[1, 0, 2], [0, 3, 0]] stored as three elements"""
    mat = SparseMatrix(5)
    mat.add_element(0, 0, 1.0)
    mat.add_element(0, 2, 2.0)
    mat.add_element(1, 1, 3.0)
    return mat


# ============================================================================
# Test Class 1: Element access
# ============================================================================


class TestElementAccess:
    """Test insertion and lookup"""

    def test_add_element(self, small_matrix):
        assert small_matrix.num_non_zero == 3
        np.testing.assert_array_equal(small_matrix.rows, [0, 0, 1])
        np.testing.assert_array_equal(small_matrix.cols, [0, 2, 1])
        np.testing.assert_array_equal(small_matrix.values, [1.0, 2.0, 3.0])

    def test_get_absent_does_not_insert(self, small_matrix):
        assert small_matrix.get(1, 2) == 0.0
        assert small_matrix.num_non_zero == 3

    def test_getitem_absent_appends_zero(self, small_matrix):
        assert small_matrix[1, 2] == 0.0
        assert small_matrix.num_non_zero == 4
        assert small_matrix.rows[-1] == 1
        assert small_matrix.cols[-1] == 2

    def test_getitem_existing(self, small_matrix):
        assert small_matrix[0, 2] == 2.0
        assert small_matrix.num_non_zero == 3

    def test_setitem_overwrites(self, small_matrix):
        small_matrix[0, 2] = 7.0
        assert small_matrix.get(0, 2) == 7.0
        assert small_matrix.num_non_zero == 3

    def test_in_place_add(self, small_matrix):
        small_matrix[1, 0] += 4.0
        assert small_matrix.get(1, 0) == 4.0
        assert small_matrix.num_non_zero == 4

    def test_lookup_returns_first_duplicate(self):
        mat = SparseMatrix(2)
        mat.add_element(0, 0, 1.0)
        mat.add_element(0, 0, 5.0)
        assert mat.get(0, 0) == 1.0

    def test_capacity_exhausted(self):
        mat = SparseMatrix(1)
        mat.add_element(0, 0, 1.0)
        with pytest.raises(IndexError, match="capacity"):
            mat.add_element(1, 1, 1.0)

    def test_getitem_beyond_capacity(self):
        mat = SparseMatrix(1)
        mat.add_element(0, 0, 1.0)
        with pytest.raises(IndexError):
            mat[0, 1]

    def test_zero_capacity(self):
        mat = SparseMatrix()
        assert mat.capacity == 0
        with pytest.raises(IndexError):
            mat.add_element(0, 0, 1.0)


# ============================================================================
# Test Class 2: Matrix-vector operations
# ============================================================================


class TestMultiply:
    """Test products with stored elements"""

    def test_multiply_add(self, small_matrix):
        out = np.array([1.0, 1.0])
        small_matrix.multiply_add(np.array([1.0, 2.0, 3.0]), out)
        np.testing.assert_allclose(out, [8.0, 7.0])

    def test_multiply_subtract(self, small_matrix):
        out = np.zeros(2)
        small_matrix.multiply_subtract(np.array([1.0, 2.0, 3.0]), out)
        np.testing.assert_allclose(out, [-7.0, -6.0])

    def test_multiply_vector_alpha_beta(self, small_matrix):
        out = np.array([10.0, 20.0])
        small_matrix.multiply_vector(np.array([1.0, 2.0, 3.0]), 2.0, 0.5, out)
        # 2 * [7, 6] + 0.5 * [10, 20]
        np.testing.assert_allclose(out, [19.0, 22.0])

    def test_beta_applied_once_per_row(self):
        """Several elements in one row scale the old value only once"""
        mat = SparseMatrix(3)
        for col in range(3):
            mat.add_element(0, col, 1.0)
        out = np.array([4.0])
        mat.multiply_vector(np.ones(3), 1.0, 0.5, out)
        np.testing.assert_allclose(out, [5.0])

    def test_duplicates_accumulate(self):
        mat = SparseMatrix(2)
        mat.add_element(0, 0, 1.0)
        mat.add_element(0, 0, 2.0)
        out = np.zeros(1)
        mat.multiply_add(np.array([2.0]), out)
        np.testing.assert_allclose(out, [6.0])

    def test_agrees_with_scipy(self, small_matrix):
        x = np.array([0.5, -1.0, 4.0])
        out = np.zeros(2)
        small_matrix.multiply_add(x, out)
        np.testing.assert_allclose(out, small_matrix.to_scipy() @ x)

    def test_beta_zero_ignores_previous_content(self, small_matrix):
        out = np.array([np.nan, np.inf])
        small_matrix.multiply_vector(np.array([1.0, 2.0, 3.0]), 1.0, 0.0, out)
        np.testing.assert_allclose(out, [7.0, 6.0])


# ============================================================================
# Test Class 3: Capacity management
# ============================================================================


class TestCapacity:
    """Test resize and clear"""

    def test_clear_keeps_capacity(self, small_matrix):
        small_matrix.clear()
        assert small_matrix.num_non_zero == 0
        assert small_matrix.capacity == 5
        small_matrix.add_element(2, 2, 1.0)
        assert small_matrix.get(0, 0) == 0.0

    def test_resize_discards_content(self, small_matrix):
        small_matrix.resize(10)
        assert small_matrix.capacity == 10
        assert small_matrix.num_non_zero == 0

    def test_negative_capacity(self):
        with pytest.raises(ValueError, match="non-negative"):
            SparseMatrix(-1)


# ============================================================================
# Test Class 4: Conversion and output
# ============================================================================


class TestConversion:
    """Test SciPy conversion and text output"""

    def test_to_scipy_default_shape(self, small_matrix):
        csr = small_matrix.to_scipy()
        assert csr.shape == (2, 3)
        np.testing.assert_array_equal(csr.toarray(), [[1.0, 0.0, 2.0], [0.0, 3.0, 0.0]])

    def test_to_scipy_sums_duplicates(self):
        mat = SparseMatrix(2)
        mat.add_element(1, 1, 1.0)
        mat.add_element(1, 1, 2.5)
        assert mat.to_scipy(shape=(3, 3)).toarray()[1, 1] == 3.5

    def test_to_scipy_empty(self):
        assert SparseMatrix(2).to_scipy().shape == (0, 0)

    def test_str(self, small_matrix):
        text = str(small_matrix)
        assert text.splitlines() == [
            "rows = [0,0,1];",
            "cols = [0,2,1];",
            "vals = [1.0,2.0,3.0];",
        ]

    def test_repr(self, small_matrix):
        assert repr(small_matrix) == "SparseMatrix(nnz=3, capacity=5)"
