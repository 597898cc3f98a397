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

"""Binding model for unit operations without bound states."""

import jax.numpy as jnp

from .base import BindingModel


class NoBinding(BindingModel):
    """
    Placeholder used when no ADSORPTION_MODEL is configured.

    All components must have zero bound states; the residual is empty.
    """

    name = "NONE"
    max_bound_states_per_component = 0

    def configure(self, provider, unit_op_idx: int) -> bool:
        return True

    def reconfigure(self, provider, unit_op_idx: int) -> bool:
        return True

    def residual(self, t, sec_idx, time_factor, c, q, q_dot, params):
        return jnp.zeros(0)

    def analytic_jacobian(self, t, sec_idx, c, q, params, jac, row_offset):
        pass
