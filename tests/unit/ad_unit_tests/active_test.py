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
Unit tests for the AD containers.

Tests cover:
1. ActiveScalar seeds and values
2. ADVector shape, segments and element access
3. evaluate_directional against hand-computed derivatives
"""

import numpy as np
import pytest

from cstrdae.ad.active import ActiveScalar, ADVector, as_active, evaluate_directional
import jax.numpy as jnp


# ============================================================================
# Test Class 1: ActiveScalar
# ============================================================================


class TestActiveScalar:
    """Test parameter values with AD seeds"""

    def test_value_and_float(self):
        p = ActiveScalar(0.25)
        assert p.value == 0.25
        assert float(p) == 0.25

    def test_set_value_keeps_seeds(self):
        p = ActiveScalar(1.0)
        p.set_ad_value(2, 1.0)
        p.set_value(3.0)
        assert p.value == 3.0
        assert p.get_ad_value(2) == 1.0

    def test_unset_direction_is_zero(self):
        assert ActiveScalar(1.0).get_ad_value(5) == 0.0

    def test_zero_seed_removes_direction(self):
        p = ActiveScalar(1.0)
        p.set_ad_value(1, 2.0)
        p.set_ad_value(1, 0.0)
        assert p.ad_directions == ()

    def test_clear_ad_values(self):
        p = ActiveScalar(1.0)
        p.set_ad_value(0, 1.0)
        p.set_ad_value(3, -1.0)
        p.clear_ad_values()
        assert p.ad_directions == ()
        np.testing.assert_array_equal(p.tangent(4), np.zeros(4))

    def test_tangent_drops_directions_beyond_count(self):
        p = ActiveScalar(1.0)
        p.set_ad_value(1, 2.0)
        p.set_ad_value(7, 1.0)
        np.testing.assert_array_equal(p.tangent(3), [0.0, 2.0, 0.0])

    def test_identity_equality(self):
        """Two scalars with equal value are distinct registry keys"""
        a, b = ActiveScalar(1.0), ActiveScalar(1.0)
        assert len({a, b}) == 2

    def test_as_active(self):
        p = ActiveScalar(2.0)
        assert as_active(p) is p
        wrapped = as_active(3)
        assert isinstance(wrapped, ActiveScalar)
        assert wrapped.value == 3.0


# ============================================================================
# Test Class 2: ADVector
# ============================================================================


class TestADVector:
    """Test the structure-of-arrays AD vector"""

    def test_shape(self):
        vec = ADVector(4, 3)
        assert len(vec) == 4
        assert vec.n_dirs == 3
        assert vec.derivatives.shape == (4, 3)

    def test_negative_shape_rejected(self):
        with pytest.raises(ValueError, match="Invalid ADVector shape"):
            ADVector(-1, 2)

    def test_from_values(self):
        vec = ADVector.from_values([1.0, 2.0], n_dirs=1)
        np.testing.assert_array_equal(vec.values, [1.0, 2.0])
        np.testing.assert_array_equal(vec.derivatives, np.zeros((2, 1)))

    def test_segment_shares_storage(self):
        vec = ADVector(5, 2)
        seg = vec.segment(2, 4)
        assert len(seg) == 2
        seg.values[0] = 7.0
        seg.set_ad_value(1, 1, 3.0)
        assert vec.values[2] == 7.0
        assert vec.get_ad_value(3, 1) == 3.0

    def test_segment_open_end(self):
        vec = ADVector(5, 1)
        assert len(vec.segment(1)) == 4

    def test_repr(self):
        assert "size=3" in repr(ADVector(3, 2))


# ============================================================================
# Test Class 3: evaluate_directional
# ============================================================================


class TestEvaluateDirectional:
    """Test forward-mode evaluation along all directions"""

    def test_identity_seeds_give_jacobian(self):
        def f(x):
            return jnp.stack([x[0] * x[1], jnp.sin(x[0]), x[1] ** 3])

        x = np.array([0.5, 2.0])
        values, deriv = evaluate_directional(f, (x,), (np.eye(2),))

        np.testing.assert_allclose(values, [1.0, np.sin(0.5), 8.0])
        expected = np.array([[2.0, 0.5], [np.cos(0.5), 0.0], [0.0, 12.0]])
        np.testing.assert_allclose(deriv, expected)

    def test_parameter_pytree_tangents(self):
        """Seeds on a dict argument give parameter derivatives"""

        def f(x, p):
            return p["k"] * x + p["c"]

        x = np.array([1.0, 3.0])
        params = {"k": 2.0, "c": 1.0}
        # Direction 0 seeds k, direction 1 seeds c
        tangents = (np.zeros((2, 2)), {"k": np.array([1.0, 0.0]), "c": np.array([0.0, 1.0])})
        values, deriv = evaluate_directional(f, (x, params), tangents)

        np.testing.assert_allclose(values, [3.0, 7.0])
        np.testing.assert_allclose(deriv, [[1.0, 1.0], [3.0, 1.0]])

    def test_zero_directions(self):
        values, deriv = evaluate_directional(lambda x: 2.0 * x, (np.ones(3),), (np.zeros((0, 3)),))
        np.testing.assert_allclose(values, [2.0, 2.0, 2.0])
        assert deriv.shape == (3, 0)

    def test_double_precision(self):
        values, deriv = evaluate_directional(lambda x: x / 3.0, (np.ones(1),), (np.ones((1, 1)),))
        assert values.dtype == np.float64
        assert values[0] == pytest.approx(1.0 / 3.0, abs=1e-15)
