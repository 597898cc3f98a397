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
Unit tests for the Newton support of StirredTankModel.

Tests cover:
1. Jacobian-vector products (dF/dy and dF/dyDot)
2. linear_solve against a dense solve of the full iteration matrix
3. Refactorization only after Jacobian updates
4. Singular iteration matrices
"""

import numpy as np
import pytest

from cstrdae import DictParameterProvider, StirredTankModel

CONFIG = {
    "NCOMP": 1,
    "NBOUND": [1],
    "POROSITY": 0.5,
    "ADSORPTION_MODEL": "LINEAR",
    "adsorption": {"LIN_KA": [2.0], "LIN_KD": [0.5]},
}

Y = np.array([3.0, 1.0, 0.5, 2.0])
Y_DOT = np.array([0.0, 0.1, 0.2, 1.0])

FULL_JAC = np.array(
    [
        [1.0, 0.0, 0.0, 0.0],
        [-2.0, 2.0, 1.0, 0.3],
        [0.0, -2.0, 0.5, 0.0],
        [0.0, 0.0, 0.0, 0.0],
    ]
)
FULL_JAC_DOT = np.array(
    [
        [0.0, 0.0, 0.0, 0.0],
        [0.0, 2.0, 2.0, 1.5],
        [0.0, 0.0, 1.0, 0.0],
        [0.0, 0.0, 0.0, 1.0],
    ]
)


@pytest.fixture
def model():
    model = StirredTankModel()
    model.configure(DictParameterProvider(CONFIG))
    model.set_flow_rates(2.0, 1.0)
    model.notify_discontinuous_section_transition(0.0, 0)
    model.residual_with_jacobian(0.0, 0, 1.0, Y, Y_DOT, np.zeros(4))
    return model


# ============================================================================
# Test Class 1: Jacobian-vector products
# ============================================================================


class TestJacobianProducts:
    """Test products with the state and time derivative Jacobians"""

    def test_multiply_with_jacobian(self, model):
        s = np.array([1.0, 2.0, 3.0, 4.0])
        ret = np.zeros(4)
        model.multiply_with_jacobian(0.0, 0, 1.0, Y, Y_DOT, s, 1.0, 0.0, ret)
        np.testing.assert_allclose(ret, FULL_JAC @ s)

    def test_multiply_alpha_beta(self, model):
        s = np.array([1.0, -1.0, 0.5, 2.0])
        ret = np.array([1.0, 2.0, 3.0, 4.0])
        expected = -2.0 * FULL_JAC @ s + 0.5 * ret
        model.multiply_with_jacobian(0.0, 0, 1.0, Y, Y_DOT, s, -2.0, 0.5, ret)
        np.testing.assert_allclose(ret, expected)

    def test_multiply_with_derivative_jacobian(self, model):
        s_dot = np.array([7.0, 1.0, -1.0, 0.5])
        ret = np.full(4, np.nan)
        model.multiply_with_derivative_jacobian(0.0, 0, 1.0, Y, Y_DOT, s_dot, ret)
        np.testing.assert_allclose(ret, FULL_JAC_DOT @ s_dot)
        assert ret[0] == 0.0


# ============================================================================
# Test Class 2: Linear solve
# ============================================================================


class TestLinearSolve:
    """Test (dF/dy + alpha dF/dyDot) x = rhs"""

    def test_matches_dense_solve(self, model):
        alpha = 2.0
        rhs = np.array([1.0, -2.0, 0.5, 3.0])
        expected = np.linalg.solve(FULL_JAC + alpha * FULL_JAC_DOT, rhs)

        assert model.linear_solve(0.0, 1.0, alpha, 1e-8, rhs, np.ones(4), Y, Y_DOT) == 0
        np.testing.assert_allclose(rhs, expected)

    def test_inlet_back_substitution(self, model):
        rhs = np.array([4.0, 0.0, 0.0, 0.0])
        model.linear_solve(0.0, 1.0, 1.0, 1e-8, rhs, None, Y, Y_DOT)
        # Inlet rows of the iteration matrix are the identity
        assert rhs[0] == 4.0

    def test_inlet_elimination(self):
        """Tank right-hand side becomes b + F_in * a before the solve"""
        model = StirredTankModel()
        model.configure(DictParameterProvider({"NCOMP": 1}))
        model.set_flow_rates(2.0, 1.0)
        y = np.array([0.0, 0.0, 1.0])
        y_dot = np.zeros(3)
        model.residual_with_jacobian(0.0, 0, 1.0, y, y_dot, np.zeros(3))

        a, b, rhs_v = 3.0, 0.5, 1.0
        rhs = np.array([a, b, rhs_v])
        assert model.linear_solve(0.0, 1.0, 1.0, 1e-8, rhs, None, y, y_dot) == 0

        # Pure iteration matrix at V = 1, dV/dt = 0: [[F_out + V, c], [0, 1]]
        pure = np.array([[1.0 + 1.0, 0.0], [0.0, 1.0]])
        np.testing.assert_allclose(rhs[1:], np.linalg.solve(pure, [b + 2.0 * a, rhs_v]))

    def test_jacobian_unchanged(self, model):
        before = model.jacobian.data.copy()
        model.linear_solve(0.0, 1.0, 3.0, 1e-8, np.ones(4), None, Y, Y_DOT)
        np.testing.assert_array_equal(model.jacobian.data, before)

    def test_factorize_only_after_update(self, model):
        model.linear_solve(0.0, 1.0, 2.0, 1e-8, np.ones(4), None, Y, Y_DOT)
        model.linear_solve(0.0, 1.0, 2.0, 1e-8, np.ones(4), None, Y, Y_DOT)
        assert model.get_stats()["factorizations"] == 1

        model.residual_with_jacobian(0.0, 0, 1.0, Y, Y_DOT, np.zeros(4))
        model.linear_solve(0.0, 1.0, 2.0, 1e-8, np.ones(4), None, Y, Y_DOT)
        assert model.get_stats()["factorizations"] == 2

    def test_singular(self):
        model = StirredTankModel()
        model.configure(DictParameterProvider({"NCOMP": 1}))
        model.set_flow_rates(0.0, 0.0)
        y = np.zeros(3)
        model.residual_with_jacobian(0.0, 0, 1.0, y, np.zeros(3), np.zeros(3))
        assert model.linear_solve(0.0, 1.0, 1.0, 1e-8, np.ones(3), None, y, np.zeros(3)) == 1
