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
Binding Model Base Class

A binding model supplies the bound-phase (stationary phase) rows of a unit
operation: their residual, their analytic Jacobian with respect to the liquid
and bound states, and their Jacobian with respect to the bound-state time
derivatives.

Conventions
-----------
- ``c`` holds the liquid phase concentrations of all n_comp components.
- ``q`` holds the stride_bound bound states, component by component
  (bound_offset[i] is the position of the first bound state of component i).
- In Jacobians the liquid phase columns are 0 .. n_comp - 1 and the bound
  state rows and columns start at ``row_offset`` (which equals n_comp for
  the stirred tank).
- ``residual`` must be traceable by JAX: it receives jax arrays during AD
  evaluations and must only use ``jax.numpy`` operations on c, q, q_dot and
  params.

Parameters are stored as ActiveScalar objects, one per component, so that
they can be registered as sensitive parameters by the owning unit operation.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import jax.numpy as jnp
import numpy as np

from ...ad.active import ActiveScalar
from ...config.parameter_provider import ParameterProvider
from ...exceptions import InvalidParameterError
from ...linalg.dense_matrix import DenseMatrix
from ...types.parameters import ParameterId, make_param_id


class BindingModel(ABC):
    """
    Capability set of an adsorption (binding) submodel.

    Subclasses declare their per-component parameter names in
    ``parameter_names`` and implement residual() and analytic_jacobian().
    """

    name: str = ""
    parameter_names: Sequence[str] = ()
    max_bound_states_per_component: int = 1

    def __init__(self):
        self._n_comp = 0
        self._n_bound = np.zeros(0, dtype=int)
        self._bound_offset = np.zeros(0, dtype=int)
        self._bound_comp = np.zeros(0, dtype=int)
        self._is_kinetic = True
        self._unit_op_idx = 0
        self._param_arrays: Dict[str, List[ActiveScalar]] = {}
        self._parameters: Dict[ParameterId, ActiveScalar] = {}

    # ========================================================================
    # Configuration
    # ========================================================================

    def configure_model_discretization(self, n_comp: int, n_bound: Sequence[int], bound_offset: Sequence[int]):
        """Receive the bound-state layout of the owning unit operation."""
        n_bound = np.asarray(n_bound, dtype=int)
        if n_bound.size and n_bound.max() > self.max_bound_states_per_component:
            raise InvalidParameterError(
                f"Binding model {self.name} supports at most "
                f"{self.max_bound_states_per_component} bound state(s) per component, got NBOUND={n_bound.tolist()}"
            )
        self._n_comp = n_comp
        self._n_bound = n_bound
        self._bound_offset = np.asarray(bound_offset, dtype=int)
        # Component index of each bound state
        self._bound_comp = np.repeat(np.arange(n_comp), n_bound)

    @property
    def stride_bound(self) -> int:
        return int(self._bound_comp.shape[0])

    @property
    def is_kinetic(self) -> bool:
        return self._is_kinetic

    def configure(self, provider: ParameterProvider, unit_op_idx: int) -> bool:
        """Read model switches and parameters (from the binding scope)."""
        self._is_kinetic = provider.get_bool("IS_KINETIC") if provider.exists("IS_KINETIC") else True
        return self.reconfigure(provider, unit_op_idx)

    def reconfigure(self, provider: ParameterProvider, unit_op_idx: int) -> bool:
        """Re-read parameter values and rebuild the parameter registry."""
        self._unit_op_idx = unit_op_idx
        self._param_arrays.clear()
        self._parameters.clear()
        for pname in self.parameter_names:
            if not provider.exists(pname):
                raise InvalidParameterError(f"Binding model {self.name} requires parameter {pname}")
            values = provider.get_double_array(pname)
            if len(values) < self._n_comp:
                raise InvalidParameterError(
                    f"{pname} contains {len(values)} values, expected {self._n_comp} (one per component)"
                )
            actives = [ActiveScalar(v) for v in values[: self._n_comp]]
            self._param_arrays[pname] = actives
            for comp, active in enumerate(actives):
                pid = make_param_id(pname, unit_op_idx, component=comp, bound_phase=0)
                self._parameters[pid] = active
        self._validate_parameters()
        return True

    def _validate_parameters(self):
        pass

    def has_algebraic_equations(self) -> bool:
        """True if the bound-state equations are algebraic (rapid equilibrium)."""
        return (not self._is_kinetic) and self.stride_bound > 0

    def consistent_initialization_workspace_size(self) -> int:
        """Number of doubles required by consistent_initial_state()."""
        return 0

    # ========================================================================
    # Equations
    # ========================================================================

    @abstractmethod
    def residual(self, t: float, sec_idx: int, time_factor: float, c, q, q_dot, params: Dict[str, "jnp.ndarray"]):
        """
        Residual of the bound-state equations (length stride_bound).

        ``q_dot`` is None if no time derivatives are available.
        """
        pass

    @abstractmethod
    def analytic_jacobian(
        self,
        t: float,
        sec_idx: int,
        c: np.ndarray,
        q: np.ndarray,
        params: Dict[str, np.ndarray],
        jac: DenseMatrix,
        row_offset: int,
    ):
        """Write d(residual)/d(c, q) into rows row_offset ... of jac."""
        pass

    def jacobian_add_discretized(self, time_factor: float, jac: DenseMatrix, row_offset: int):
        """Add d(residual)/d(q_dot): time_factor on the diagonal of kinetic rows."""
        if not self._is_kinetic:
            return
        for k in range(self.stride_bound):
            jac[row_offset + k, row_offset + k] += time_factor

    def consistent_initial_state(
        self, t: float, sec_idx: int, c: np.ndarray, q: np.ndarray, error_tol: float, workspace: Optional[np.ndarray]
    ):
        """Solve algebraic bound-state equations for q in place (no-op for kinetic binding)."""
        pass

    def _kinetic_term(self, time_factor: float, q_dot):
        if q_dot is None or not self._is_kinetic:
            return 0.0
        return time_factor * q_dot

    # ========================================================================
    # Parameters
    # ========================================================================

    def parameter_values(self) -> Dict[str, np.ndarray]:
        """Primal parameter values, one array (n_comp,) per parameter name."""
        return {
            pname: np.array([a.value for a in actives], dtype=float)
            for pname, actives in self._param_arrays.items()
        }

    def parameter_tangents(self, n_dirs: int) -> Dict[str, np.ndarray]:
        """AD seeds of the parameters, one array (n_dirs, n_comp) per name."""
        tangents = {}
        for pname, actives in self._param_arrays.items():
            seeds = np.zeros((n_dirs, len(actives)))
            for comp, active in enumerate(actives):
                seeds[:, comp] = active.tangent(n_dirs)
            tangents[pname] = seeds
        return tangents

    def get_all_parameter_values(self) -> Dict[ParameterId, float]:
        return {pid: active.value for pid, active in self._parameters.items()}

    def has_parameter(self, pid: ParameterId) -> bool:
        return self.get_parameter(pid) is not None

    def get_parameter(self, pid: ParameterId) -> Optional[ActiveScalar]:
        if not pid.matches_unit(self._unit_op_idx):
            return None
        return self._parameters.get(pid.for_unit(self._unit_op_idx))

    def set_parameter(self, pid: ParameterId, value) -> bool:
        active = self.get_parameter(pid)
        if active is None:
            return False
        active.set_value(value)
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n_comp={self._n_comp}, stride_bound={self.stride_bound}, kinetic={self._is_kinetic})"
