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
Multi-Component Langmuir Binding Model

Bound state k of component i follows

    dq_k/dt = ka_i * c_i * qmax_i * (1 - sum_j q_j / qmax_j) - kd_i * q_k

in kinetic mode, or the corresponding algebraic constraint in
rapid-equilibrium mode (IS_KINETIC = 0). The rapid-equilibrium solution is
explicit:

    q_k = qmax_i * K_i * c_i / (1 + sum_j K_j * c_j),   K = ka / kd

Parameters (binding scope):
- MCL_KA, MCL_KD, MCL_QMAX: one value per component
- IS_KINETIC: optional, default 1
"""

import jax.numpy as jnp
import numpy as np

from ...exceptions import InvalidParameterError
from .base import BindingModel


class LangmuirBinding(BindingModel):
    """Competitive Langmuir isotherm with component-wise capacities."""

    name = "MULTI_COMPONENT_LANGMUIR"
    parameter_names = ("MCL_KA", "MCL_KD", "MCL_QMAX")

    def _validate_parameters(self):
        qmax = self._param_arrays["MCL_QMAX"]
        for comp in self._bound_comp:
            if qmax[comp].value <= 0.0:
                raise InvalidParameterError(
                    f"MCL_QMAX of bound component {comp} must be positive, got {qmax[comp].value}"
                )

    def residual(self, t, sec_idx, time_factor, c, q, q_dot, params):
        ka = params["MCL_KA"][self._bound_comp]
        kd = params["MCL_KD"][self._bound_comp]
        qmax = params["MCL_QMAX"][self._bound_comp]
        free_fraction = 1.0 - jnp.sum(q / qmax)
        return (
            self._kinetic_term(time_factor, q_dot)
            + kd * q
            - ka * c[self._bound_comp] * qmax * free_fraction
        )

    def analytic_jacobian(self, t, sec_idx, c, q, params, jac, row_offset):
        ka = params["MCL_KA"]
        kd = params["MCL_KD"]
        qmax = params["MCL_QMAX"]
        bound_qmax = qmax[self._bound_comp]
        free_fraction = 1.0 - np.sum(np.asarray(q) / bound_qmax)

        for k, comp in enumerate(self._bound_comp):
            row = row_offset + k
            jac[row, comp] = -ka[comp] * qmax[comp] * free_fraction
            coupling = ka[comp] * c[comp] * qmax[comp]
            for j in range(self.stride_bound):
                jac[row, row_offset + j] = coupling / bound_qmax[j]
            jac[row, row] += kd[comp]

    def consistent_initialization_workspace_size(self) -> int:
        return self.stride_bound

    def consistent_initial_state(self, t, sec_idx, c, q, error_tol, workspace):
        if self._is_kinetic:
            return

        params = self.parameter_values()
        keq = workspace[: self.stride_bound]
        for k, comp in enumerate(self._bound_comp):
            kd = params["MCL_KD"][comp]
            keq[k] = params["MCL_KA"][comp] / kd if kd != 0.0 else 0.0

        denom = 1.0 + np.dot(keq, np.asarray(c)[self._bound_comp])
        for k, comp in enumerate(self._bound_comp):
            if keq[k] != 0.0:
                q[k] = params["MCL_QMAX"][comp] * keq[k] * c[comp] / denom
