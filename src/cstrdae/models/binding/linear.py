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
Linear Binding Model

Bound state k of component i follows

    dq_k/dt = ka_i * c_i - kd_i * q_k

in kinetic mode. In rapid-equilibrium mode (IS_KINETIC = 0) the same
equation without the time derivative is an algebraic constraint.

Parameters (binding scope):
- LIN_KA: adsorption rate, one value per component
- LIN_KD: desorption rate, one value per component
- IS_KINETIC: optional, default 1
"""


from .base import BindingModel


class LinearBinding(BindingModel):
    """Linear isotherm, residual kd*q - ka*c (+ time_factor*dq/dt)."""

    name = "LINEAR"
    parameter_names = ("LIN_KA", "LIN_KD")

    def residual(self, t, sec_idx, time_factor, c, q, q_dot, params):
        ka = params["LIN_KA"][self._bound_comp]
        kd = params["LIN_KD"][self._bound_comp]
        return self._kinetic_term(time_factor, q_dot) + kd * q - ka * c[self._bound_comp]

    def analytic_jacobian(self, t, sec_idx, c, q, params, jac, row_offset):
        ka = params["LIN_KA"]
        kd = params["LIN_KD"]
        for k, comp in enumerate(self._bound_comp):
            jac[row_offset + k, comp] = -ka[comp]
            jac[row_offset + k, row_offset + k] = kd[comp]

    def consistent_initialization_workspace_size(self) -> int:
        return self.stride_bound

    def consistent_initial_state(self, t, sec_idx, c, q, error_tol, workspace):
        if self._is_kinetic:
            return

        params = self.parameter_values()
        # Equilibrium constants ka / kd, zero where kd vanishes
        keq = workspace[: self.stride_bound]
        keq[:] = 0.0
        for k, comp in enumerate(self._bound_comp):
            kd = params["LIN_KD"][comp]
            if kd != 0.0:
                keq[k] = params["LIN_KA"][comp] / kd
                q[k] = keq[k] * c[comp]
