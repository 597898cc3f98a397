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
Unit tests for AD seeding, Jacobian extraction and Jacobian comparison.

Tests cover:
1. Band compressed seeding (direction layout, reserved directions)
2. Dense seeding
3. Extraction of band and dense Jacobians after a JAX evaluation
4. Comparison of analytic Jacobians with AD results
5. Value transfer helpers
"""

import jax.numpy as jnp
import numpy as np
import pytest

from cstrdae.ad import (
    ADVector,
    compare_banded_jacobian_with_ad,
    compare_dense_jacobian_with_ad,
    compare_dense_jacobian_with_banded_ad,
    copy_from_ad,
    copy_to_ad,
    evaluate_directional,
    extract_banded_jacobian_from_ad,
    extract_dense_jacobian_from_ad,
    extract_dense_jacobian_from_banded_ad,
    prepare_ad_vector_seeds_for_band_matrix,
    prepare_ad_vector_seeds_for_dense_matrix,
    reset_ad,
)
from cstrdae.linalg import BandMatrix, DenseMatrix


def tridiagonal_residual(x):
    """F_i = x_{i-1} - 2 x_i^2 + 3 x_{i+1} (zero outside)."""
    left = jnp.concatenate([jnp.zeros(1), x[:-1]])
    right = jnp.concatenate([x[1:], jnp.zeros(1)])
    return left - 2.0 * x ** 2 + 3.0 * right


def tridiagonal_jacobian(x):
    n = x.shape[0]
    jac = np.diag(-4.0 * x)
    jac += np.diag(np.ones(n - 1), -1)
    jac += 3.0 * np.diag(np.ones(n - 1), 1)
    return jac


def evaluate_seeded(fun, ad_vec):
    """Evaluate fun on ad_vec (values and seeds) and return the AD residual."""
    values, deriv = evaluate_directional(fun, (ad_vec.values,), (ad_vec.derivatives.T,))
    res = ADVector(values.shape[0], ad_vec.n_dirs)
    res.values[:] = values
    res.derivatives[:] = deriv
    return res


# ============================================================================
# Test Class 1: Seeding
# ============================================================================


class TestBandSeeding:
    """Test band compressed seed vectors"""

    def test_tridiagonal_three_directions(self):
        vec = ADVector(3, 3)
        prepare_ad_vector_seeds_for_band_matrix(vec, 0, 3, 1, 1, 1)
        # Column j is seeded in direction (1 + j) % 3
        expected = np.array([[0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [1.0, 0.0, 0.0]])
        np.testing.assert_array_equal(vec.derivatives, expected)

    def test_reserved_directions_untouched(self):
        vec = ADVector(4, 5)
        vec.derivatives[:, :2] = 9.0
        prepare_ad_vector_seeds_for_band_matrix(vec, 2, 4, 1, 1, 1)
        np.testing.assert_array_equal(vec.derivatives[:, :2], 9.0)
        # Every entry has exactly one unit seed
        np.testing.assert_array_equal(vec.derivatives[:, 2:].sum(axis=1), np.ones(4))

    def test_too_few_directions(self):
        with pytest.raises(ValueError, match="need 3"):
            prepare_ad_vector_seeds_for_band_matrix(ADVector(4, 2), 0, 4, 1, 1, 1)


class TestDenseSeeding:
    """Test one direction per column"""

    def test_identity_after_offset(self):
        vec = ADVector(3, 5)
        prepare_ad_vector_seeds_for_dense_matrix(vec, 2, 3, 3)
        np.testing.assert_array_equal(vec.derivatives[:, 2:], np.eye(3))
        np.testing.assert_array_equal(vec.derivatives[:, :2], 0.0)

    def test_too_few_directions(self):
        with pytest.raises(ValueError, match="need 4"):
            prepare_ad_vector_seeds_for_dense_matrix(ADVector(3, 3), 1, 3, 3)


# ============================================================================
# Test Class 2: Extraction
# ============================================================================


class TestExtraction:
    """Test Jacobian reconstruction from seeded evaluations"""

    def test_banded_extraction_matches_closed_form(self):
        x = np.array([0.5, 1.0, -2.0, 3.0, 0.25])
        vec = ADVector.from_values(x, n_dirs=4)
        prepare_ad_vector_seeds_for_band_matrix(vec, 1, 5, 1, 1, 1)
        res = evaluate_seeded(tridiagonal_residual, vec)

        mat = BandMatrix(5, 1, 1)
        extract_banded_jacobian_from_ad(res, 1, 1, mat)
        np.testing.assert_allclose(mat.to_dense(), tridiagonal_jacobian(x))

    def test_dense_extraction_from_banded(self):
        x = np.array([1.0, 2.0, 3.0, 4.0])
        vec = ADVector.from_values(x, n_dirs=3)
        prepare_ad_vector_seeds_for_band_matrix(vec, 0, 4, 1, 1, 1)
        res = evaluate_seeded(tridiagonal_residual, vec)

        block = DenseMatrix(3, 3)
        block.set_all(5.0)
        extract_dense_jacobian_from_banded_ad(res, 1, 0, 1, 1, 1, block)
        np.testing.assert_allclose(block.data, tridiagonal_jacobian(x)[1:4, 1:4])

    def test_dense_extraction(self):
        def f(x):
            return jnp.stack([x[0] * x[1] * x[2], x[0] + x[2]])

        x = np.array([1.0, 2.0, 3.0])
        vec = ADVector.from_values(x, n_dirs=4)
        prepare_ad_vector_seeds_for_dense_matrix(vec, 1, 2, 3)
        res = evaluate_seeded(f, vec)

        mat = DenseMatrix(2, 3)
        extract_dense_jacobian_from_ad(res, 1, mat)
        np.testing.assert_allclose(mat.data, [[6.0, 3.0, 2.0], [1.0, 0.0, 1.0]])


# ============================================================================
# Test Class 3: Comparison
# ============================================================================


class TestComparison:
    """Test maximum deviation of analytic Jacobians from AD"""

    @pytest.fixture
    def banded_ad(self):
        x = np.array([1.0, -1.0, 2.0])
        vec = ADVector.from_values(x, n_dirs=3)
        prepare_ad_vector_seeds_for_band_matrix(vec, 0, 3, 1, 1, 1)
        return x, evaluate_seeded(tridiagonal_residual, vec)

    def test_banded_identical_is_zero(self, banded_ad):
        x, res = banded_ad
        mat = BandMatrix(3, 1, 1)
        extract_banded_jacobian_from_ad(res, 0, 1, mat)
        assert compare_banded_jacobian_with_ad(res, 0, 1, mat) == 0.0

    def test_banded_relative_difference(self, banded_ad):
        x, res = banded_ad
        mat = BandMatrix(3, 1, 1)
        extract_banded_jacobian_from_ad(res, 0, 1, mat)
        # Diagonal of row 0 is -4; perturb by 10 percent
        mat.set_centered(0, 0, -4.4)
        assert compare_banded_jacobian_with_ad(res, 0, 1, mat) == pytest.approx(0.1)

    def test_dense_against_banded(self, banded_ad):
        x, res = banded_ad
        block = DenseMatrix(3, 3)
        block.data[:] = tridiagonal_jacobian(x)
        assert compare_dense_jacobian_with_banded_ad(res, 0, 0, 1, 1, 1, block) == 0.0
        # Nonzero outside the band counts as absolute difference
        block[0, 2] = 0.5
        assert compare_dense_jacobian_with_banded_ad(res, 0, 0, 1, 1, 1, block) == pytest.approx(0.5)

    def test_dense_absolute_where_ad_is_zero(self):
        vec = ADVector(2, 2)
        vec.derivatives[:] = [[2.0, 0.0], [0.0, 4.0]]
        mat = DenseMatrix(2, 2)
        mat.data[:] = [[2.0, 0.25], [0.0, 4.0]]
        assert compare_dense_jacobian_with_ad(vec, 0, mat) == pytest.approx(0.25)

    def test_dense_relative(self):
        vec = ADVector(1, 1)
        vec.derivatives[0, 0] = 10.0
        mat = DenseMatrix(1, 1)
        mat[0, 0] = 9.0
        assert compare_dense_jacobian_with_ad(vec, 0, mat) == pytest.approx(0.1)


# ============================================================================
# Test Class 4: Value transfer
# ============================================================================


class TestValueTransfer:
    """Test copying between plain and AD vectors"""

    def test_copy_to_ad_keeps_seeds(self):
        vec = ADVector(3, 2)
        vec.derivatives[:] = 1.0
        copy_to_ad(np.array([1.0, 2.0, 3.0]), vec, 2)
        np.testing.assert_array_equal(vec.values, [1.0, 2.0, 0.0])
        np.testing.assert_array_equal(vec.derivatives, 1.0)

    def test_copy_from_ad(self):
        vec = ADVector.from_values([4.0, 5.0, 6.0], 1)
        dest = np.zeros(3)
        copy_from_ad(vec, dest, 2)
        np.testing.assert_array_equal(dest, [4.0, 5.0, 0.0])

    def test_reset_ad(self):
        vec = ADVector.from_values([1.0, 2.0, 3.0], 2)
        vec.derivatives[:] = 1.0
        reset_ad(vec, 2)
        np.testing.assert_array_equal(vec.values, [0.0, 0.0, 3.0])
        np.testing.assert_array_equal(vec.derivatives[:2], 0.0)
        np.testing.assert_array_equal(vec.derivatives[2], 1.0)
