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
Stirred Tank (CSTR) Unit Operation

Differential-algebraic model of a well-mixed tank with variable volume and an
optional stationary (bound) phase.

State Layout
------------
    y = [c_in (n_comp), c (n_comp), q (stride_bound), V (1)]

- c_in: inlet concentrations, algebraic pass-through DOFs set by the
  surrounding flow sheet
- c: liquid concentrations in the tank
- q: bound states, component by component (see bound_offset)
- V: liquid volume

The "pure" DOFs are [c, q, V]; the Jacobian matrices are square over them.

Equations
---------
With beta = porosity, tf = time factor and the flow rates F_in, F_out, F_filter:

    inlet:   c_in,i
    tank:    tf * ((dc_i/dt + (1/beta - 1) * sum_j dq_ij/dt) * V
                   + dV/dt * (c_i + (1/beta - 1) * sum_j q_ij))
             - F_in * c_in,i + F_out * c_i
    bound:   binding model residual
    volume:  tf * dV/dt - F_in + F_out + F_filter

Jacobian Strategies
-------------------
- analytic (default): closed form dF/dy assembled in DenseMatrix storage
- AD: the state is seeded with one direction per pure DOF, the residual is
  evaluated once with JAX forward mode and the Jacobian read back
- check mode (``check_analytic_jacobian=True``): AD is used and the analytic
  Jacobian is computed alongside; the maximum discrepancy is logged and
  recorded in get_stats(). It never fails an evaluation.

AD Directions
-------------
AD vectors (ADVector) are owned by the caller and shared with other unit
operations. Directions 0 .. ad_dir_offset-1 carry parameter sensitivities,
directions ad_dir_offset .. ad_dir_offset+required_ad_dirs()-1 carry the
Jacobian seeds placed by prepare_ad_vectors().

Examples
--------
>>> from cstrdae.config import DictParameterProvider
>>> model = StirredTankModel()
>>> model.configure(DictParameterProvider({"NCOMP": 1}))
True
>>> model.set_flow_rates(2.0, 1.0)
>>> y = np.array([5.0, 0.0, 0.0])      # c_in, c, V
>>> model.consistent_initial_state(0.0, 0, 1.0, y)
>>> y
array([5., 5., 0.])
"""

import logging
import warnings
from contextlib import contextmanager
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set

import jax
import jax.numpy as jnp
import numpy as np

from ..ad.active import ActiveScalar, ADVector, as_active, evaluate_directional
from ..ad.ad_utils import (
    compare_dense_jacobian_with_ad,
    copy_from_ad,
    copy_to_ad,
    extract_dense_jacobian_from_ad,
    prepare_ad_vector_seeds_for_dense_matrix,
    reset_ad,
)
from ..config.parameter_provider import ParameterProvider, read_scalar_parameter_or_array
from ..exceptions import InvalidParameterError
from ..linalg.dense_matrix import DenseMatrix
from ..types.core import ModelStats
from ..types.parameters import ParameterId, make_param_id
from .binding.base import BindingModel
from .binding.factory import BindingModelFactory
from .exporter import SolutionRecorder, StirredTankExporter

logger = logging.getLogger(__name__)


class ModelState(Enum):
    """Lifecycle of a unit operation model."""

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    EVALUATING = "evaluating"
    DISPOSED = "disposed"


class StirredTankModel:
    """
    Continuous stirred tank reactor (CSTR) unit operation.

    Parameters
    ----------
    unit_op_idx : int
        Index of the unit operation in its flow sheet; parameter ids carry it
    check_analytic_jacobian : bool
        Compute AD and analytic Jacobians on every update and compare them
        (default: False)
    binding_factory : type
        Factory resolving ADSORPTION_MODEL names (default: BindingModelFactory)

    Notes
    -----
    The model is not reentrant: calling an evaluation entry point from
    inside another one (e.g. from a binding model callback) raises
    RuntimeError. One instance must not be shared between threads.
    """

    def __init__(
        self,
        unit_op_idx: int = 0,
        check_analytic_jacobian: bool = False,
        binding_factory=None,
    ):
        self._unit_op_idx = unit_op_idx
        self._check_analytic_jacobian = bool(check_analytic_jacobian)
        self._binding_factory = binding_factory if binding_factory is not None else BindingModelFactory

        self._n_comp = 0
        self._n_bound: Optional[np.ndarray] = None
        self._bound_offset: Optional[np.ndarray] = None
        self._stride_bound = 0
        self._bound_sum: Optional[np.ndarray] = None

        self._binding: Optional[BindingModel] = None
        self._analytic_jac = not self._check_analytic_jacobian

        # dF/dy, Newton matrix (factorized) and dF/dyDot scratch
        self._jac = DenseMatrix()
        self._jac_fact = DenseMatrix()
        self._jac_dot = DenseMatrix()
        self._factorize_jac = False
        self._consistent_init_buffer: Optional[np.ndarray] = None

        self._flow_rate_in = ActiveScalar(0.0)
        self._flow_rate_out = ActiveScalar(0.0)
        self._flow_rate_filter: List[ActiveScalar] = []
        self._cur_flow_rate_filter = ActiveScalar(0.0)
        self._porosity = ActiveScalar(1.0)

        self._parameters: Dict[ParameterId, ActiveScalar] = {}
        self._sens_params: Set[ActiveScalar] = set()

        self._state = ModelState.UNCONFIGURED
        self._stats: ModelStats = self._empty_stats()

    # ========================================================================
    # Structure
    # ========================================================================

    @property
    def unit_op_idx(self) -> int:
        return self._unit_op_idx

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def n_comp(self) -> int:
        return self._n_comp

    @property
    def n_bound(self) -> np.ndarray:
        return self._n_bound.copy()

    @property
    def bound_offset(self) -> np.ndarray:
        return self._bound_offset.copy()

    @property
    def stride_bound(self) -> int:
        return self._stride_bound

    @property
    def binding(self) -> Optional[BindingModel]:
        return self._binding

    @property
    def check_analytic_jacobian(self) -> bool:
        return self._check_analytic_jacobian

    @property
    def jacobian(self) -> DenseMatrix:
        """Current dF/dy over the pure DOFs (not a copy)."""
        return self._jac

    def num_dofs(self) -> int:
        return 2 * self._n_comp + self._stride_bound + 1

    def num_pure_dofs(self) -> int:
        return self._n_comp + self._stride_bound + 1

    def uses_ad(self) -> bool:
        """True if residual evaluations with Jacobian update need AD vectors."""
        return self._check_analytic_jacobian or not self._analytic_jac

    def required_ad_dirs(self) -> int:
        return self.num_pure_dofs()

    def use_analytic_jacobian(self, analytic_jac: bool):
        """Select the Jacobian strategy (ignored in check mode, which always uses AD)."""
        self._analytic_jac = bool(analytic_jac) and not self._check_analytic_jacobian

    # ========================================================================
    # Configuration
    # ========================================================================

    def configure(self, provider: ParameterProvider) -> bool:
        """
        Configure dimensions, Jacobian storage and the binding model.

        Returns the success flag of the binding model configuration.

        Raises
        ------
        InvalidParameterError
            If NCOMP, NBOUND or INIT_C are inconsistent, or ADSORPTION_MODEL
            names an unknown binding model
        """
        if self._state is ModelState.DISPOSED:
            raise RuntimeError("Cannot configure a disposed model")

        n_comp = provider.get_int("NCOMP")
        if n_comp < 1:
            raise InvalidParameterError(f"NCOMP must be positive, got {n_comp}")

        if provider.exists("NBOUND"):
            n_bound = provider.get_int_array("NBOUND")
            if len(n_bound) < n_comp:
                raise InvalidParameterError(
                    f"NBOUND contains {len(n_bound)} values, expected {n_comp}"
                )
            n_bound = np.asarray(n_bound[:n_comp], dtype=int)
            if np.any(n_bound < 0):
                raise InvalidParameterError(f"NBOUND must be non-negative, got {n_bound.tolist()}")
        else:
            n_bound = np.zeros(n_comp, dtype=int)

        if provider.exists("INIT_C") and len(provider.get_double_array("INIT_C")) < n_comp:
            raise InvalidParameterError("INIT_C does not contain enough values for all components")

        self._n_comp = n_comp
        self._n_bound = n_bound

        # Offsets and total number of bound states
        self._bound_offset = np.zeros(n_comp, dtype=int)
        self._bound_offset[1:] = np.cumsum(n_bound)[:-1]
        self._stride_bound = int(self._bound_offset[-1] + n_bound[-1])

        # Row i sums the bound states of component i
        self._bound_sum = np.zeros((n_comp, self._stride_bound))
        for i in range(n_comp):
            start = self._bound_offset[i]
            self._bound_sum[i, start : start + n_bound[i]] = 1.0

        n_var = self.num_pure_dofs()
        self._jac.resize(n_var, n_var)
        self._jac_fact.resize(n_var, n_var)
        self._jac_dot.resize(n_var, n_var)
        self._factorize_jac = False

        analytic_jac = True
        if provider.exists("USE_ANALYTIC_JACOBIAN"):
            analytic_jac = provider.get_bool("USE_ANALYTIC_JACOBIAN")
        self.use_analytic_jacobian(analytic_jac)

        self._binding = None
        self._consistent_init_buffer = None
        self.reconfigure(provider)

        success = True
        if provider.exists("ADSORPTION_MODEL"):
            name = provider.get_string("ADSORPTION_MODEL")
            binding = self._binding_factory.create(name)
            if binding is None:
                raise InvalidParameterError(f"Unknown binding model {name}")

            binding.configure_model_discretization(n_comp, n_bound, self._bound_offset)
            if not provider.exists("adsorption"):
                raise InvalidParameterError(
                    f"Binding model {name} requires an 'adsorption' parameter group"
                )
            with provider.scope("adsorption"):
                success = binding.configure(provider, self._unit_op_idx)

            # Workspace for solving algebraic binding equations
            if binding.has_algebraic_equations():
                size = binding.consistent_initialization_workspace_size()
                if size > 0:
                    self._consistent_init_buffer = np.zeros(size)
        else:
            binding = self._binding_factory.create("NONE")
            binding.configure_model_discretization(n_comp, n_bound, self._bound_offset)

        self._binding = binding
        self._state = ModelState.CONFIGURED
        return success

    def reconfigure(self, provider: ParameterProvider) -> bool:
        """
        Re-read time-varying parameters (FLOWRATE_FILTER, POROSITY).

        Dimensions are not changed. The parameter registry is rebuilt.
        """
        self._cur_flow_rate_filter = ActiveScalar(0.0)
        self._flow_rate_filter = []
        has_filter = provider.exists("FLOWRATE_FILTER")
        if has_filter:
            self._flow_rate_filter = read_scalar_parameter_or_array(provider, "FLOWRATE_FILTER", 1)

        porosity = provider.get_double("POROSITY") if provider.exists("POROSITY") else 1.0
        if not 0.0 < porosity <= 1.0:
            raise InvalidParameterError(f"POROSITY must be in (0, 1], got {porosity}")
        self._porosity.set_value(porosity)

        self._parameters.clear()
        if has_filter:
            if len(self._flow_rate_filter) == 1:
                self._parameters[make_param_id("FLOWRATE_FILTER", self._unit_op_idx)] = self._flow_rate_filter[0]
            else:
                for sec, active in enumerate(self._flow_rate_filter):
                    pid = make_param_id("FLOWRATE_FILTER", self._unit_op_idx, section=sec)
                    self._parameters[pid] = active
        self._parameters[make_param_id("POROSITY", self._unit_op_idx)] = self._porosity

        if self._binding is not None and provider.exists("adsorption"):
            with provider.scope("adsorption"):
                return self._binding.reconfigure(provider, self._unit_op_idx)

        return True

    def set_flow_rates(self, flow_in, flow_out):
        """Set inlet and outlet volumetric flow rates (floats or ActiveScalar)."""
        self._flow_rate_in = as_active(flow_in)
        self._flow_rate_out = as_active(flow_out)

    def set_section_times(self, section_times: Sequence[float], section_continuity: Sequence[bool], n_sections: int):
        pass

    def notify_discontinuous_section_transition(
        self,
        t: float,
        sec_idx: int,
        ad_res: Optional[ADVector] = None,
        ad_y: Optional[ADVector] = None,
        ad_dir_offset: int = 0,
    ):
        """Select the filter flow rate of the section that starts at time t."""
        if len(self._flow_rate_filter) > 1:
            self._cur_flow_rate_filter = self._flow_rate_filter[sec_idx]
        elif len(self._flow_rate_filter) == 1:
            self._cur_flow_rate_filter = self._flow_rate_filter[0]

    @property
    def current_flow_rate_filter(self) -> float:
        return self._cur_flow_rate_filter.value

    def dispose(self):
        """Release buffers and matrices; the model cannot be used afterwards."""
        self.clear_sens_params()
        self._n_bound = None
        self._bound_offset = None
        self._bound_sum = None
        self._consistent_init_buffer = None
        self._binding = None
        self._jac.resize(0, 0)
        self._jac_fact.resize(0, 0)
        self._jac_dot.resize(0, 0)
        self._parameters.clear()
        self._state = ModelState.DISPOSED

    @contextmanager
    def _evaluation(self):
        if self._state is ModelState.EVALUATING:
            raise RuntimeError("StirredTankModel is not reentrant")
        if self._state is not ModelState.CONFIGURED:
            raise RuntimeError(f"Model is {self._state.value}, configure() it before evaluation")
        self._state = ModelState.EVALUATING
        try:
            yield
        finally:
            self._state = ModelState.CONFIGURED

    # ========================================================================
    # Parameters
    # ========================================================================

    def get_all_parameter_values(self) -> Dict[ParameterId, float]:
        data = {pid: active.value for pid, active in self._parameters.items()}
        if self._binding is not None:
            data.update(self._binding.get_all_parameter_values())
        return data

    def has_parameter(self, pid: ParameterId) -> bool:
        if not pid.matches_unit(self._unit_op_idx):
            return False
        pid = pid.for_unit(self._unit_op_idx)
        if pid in self._parameters:
            return True
        return self._binding is not None and self._binding.has_parameter(pid)

    def set_parameter(self, pid: ParameterId, value) -> bool:
        if not pid.matches_unit(self._unit_op_idx):
            return False
        pid = pid.for_unit(self._unit_op_idx)

        active = self._parameters.get(pid)
        if active is not None:
            active.set_value(value)
            return True
        if self._binding is not None:
            return self._binding.set_parameter(pid, value)
        return False

    def _find_parameter(self, pid: ParameterId) -> Optional[ActiveScalar]:
        pid = pid.for_unit(self._unit_op_idx)
        active = self._parameters.get(pid)
        if active is None and self._binding is not None:
            active = self._binding.get_parameter(pid)
        return active

    def set_sensitive_parameter_value(self, pid: ParameterId, value: float):
        """Change the value of a parameter that is currently sensitive."""
        if not pid.matches_unit(self._unit_op_idx):
            return
        active = self._find_parameter(pid)
        if active is not None and active in self._sens_params:
            active.set_value(value)

    def set_sensitive_parameter(self, pid: ParameterId, ad_direction: int, ad_value: float = 1.0) -> bool:
        """
        Mark a parameter as sensitive and seed it in the given AD direction.

        A parameter carries at most one direction: previous seeds are removed.
        Returns False if the parameter does not belong to this unit operation.
        """
        if not pid.matches_unit(self._unit_op_idx):
            return False
        pid = pid.for_unit(self._unit_op_idx)

        active = self._parameters.get(pid)
        owner = "CSTR"
        if active is None and self._binding is not None:
            active = self._binding.get_parameter(pid)
            owner = "binding model"
        if active is None:
            return False

        logger.debug("Found parameter %s in %s: Dir %d is set to %g", pid, owner, ad_direction, ad_value)
        active.clear_ad_values()
        active.set_ad_value(ad_direction, ad_value)
        self._sens_params.add(active)
        return True

    def clear_sens_params(self):
        """Remove AD seeds from all sensitive parameters and forget them."""
        for active in self._sens_params:
            active.clear_ad_values()
        self._sens_params.clear()

    @property
    def num_sens_params(self) -> int:
        return len(self._sens_params)

    def _param_primals(self) -> dict:
        return {
            "flow_in": self._flow_rate_in.value,
            "flow_out": self._flow_rate_out.value,
            "flow_filter": self._cur_flow_rate_filter.value,
            "porosity": self._porosity.value,
            "binding": self._binding.parameter_values(),
        }

    def _param_tangents(self, n_dirs: int) -> dict:
        return {
            "flow_in": self._flow_rate_in.tangent(n_dirs),
            "flow_out": self._flow_rate_out.tangent(n_dirs),
            "flow_filter": self._cur_flow_rate_filter.tangent(n_dirs),
            "porosity": self._porosity.tangent(n_dirs),
            "binding": self._binding.parameter_tangents(n_dirs),
        }

    @staticmethod
    def _zero_tangents(primals, n_dirs: int):
        return jax.tree_util.tree_map(lambda a: np.zeros((n_dirs,) + np.shape(a)), primals)

    # ========================================================================
    # Initial conditions
    # ========================================================================

    def apply_initial_condition(
        self, y: np.ndarray, y_dot: np.ndarray, provider: Optional[ParameterProvider] = None
    ):
        """
        Write initial values into y (and possibly y_dot).

        Without a provider both vectors are zeroed. Otherwise INIT_STATE is
        used if present (its second half, if given, initializes y_dot);
        else INIT_C, INIT_Q (default 0) and INIT_VOLUME (default 0).
        """
        n, sb = self._n_comp, self._stride_bound
        n_dofs = self.num_dofs()

        if provider is None:
            y[:n_dofs] = 0.0
            y_dot[:n_dofs] = 0.0
            return

        if provider.exists("INIT_STATE"):
            init_state = provider.get_double_array("INIT_STATE")
            if len(init_state) < n_dofs:
                raise InvalidParameterError(
                    f"INIT_STATE contains {len(init_state)} values, expected at least {n_dofs}"
                )
            y[:n_dofs] = init_state[:n_dofs]
            if len(init_state) >= 2 * n_dofs:
                y_dot[:n_dofs] = init_state[n_dofs : 2 * n_dofs]
            return

        if not provider.exists("INIT_C"):
            raise InvalidParameterError("INIT_C is required if INIT_STATE is not given")
        init_c = provider.get_double_array("INIT_C")
        if len(init_c) < n:
            raise InvalidParameterError("INIT_C does not contain enough values for all components")
        y[n : 2 * n] = init_c[:n]

        if provider.exists("INIT_Q"):
            init_q = provider.get_double_array("INIT_Q")
            if len(init_q) < sb:
                raise InvalidParameterError("INIT_Q does not contain enough values for all bound states")
            y[2 * n : 2 * n + sb] = init_q[:sb]
        else:
            y[2 * n : 2 * n + sb] = 0.0

        y[2 * n + sb] = provider.get_double("INIT_VOLUME") if provider.exists("INIT_VOLUME") else 0.0

    def consistent_initial_state(
        self,
        t: float,
        sec_idx: int,
        time_factor: float,
        y: np.ndarray,
        ad_res: Optional[ADVector] = None,
        ad_y: Optional[ADVector] = None,
        ad_dir_offset: int = 0,
        error_tol: float = 1e-12,
    ):
        """
        Make the algebraic parts of y consistent, in place.

        At V = 0 the tank equation is algebraic in c:

            (dV/dt + F_out) * c = F_in * c_in - dV/dt * (1/beta - 1) * sum_j q_j

        with dV/dt = F_in - F_out - F_filter (time factor included). If the
        left-hand coefficient vanishes the concentrations are left unchanged:
        for a valid configuration this only happens if F_in = F_out =
        F_filter = 0, where nothing can change.

        Algebraic (rapid-equilibrium) binding equations are solved by the
        binding model. At V = 0 they couple to the tank equation through the
        bound states and both are solved together by Newton iteration.
        """
        with self._evaluation():
            n, sb = self._n_comp, self._stride_bound
            c_in = y[:n]
            c = y[n : 2 * n]
            q = y[2 * n : 2 * n + sb]
            v = y[2 * n + sb]

            if v == 0.0:
                flow_in = self._flow_rate_in.value
                flow_out = self._flow_rate_out.value
                # time_factor * dV/dt
                v_dot = flow_in - flow_out - self._cur_flow_rate_filter.value
                inv_beta = 1.0 / self._porosity.value - 1.0

                denom = v_dot + flow_out
                if denom != 0.0:
                    c[:] = (flow_in * c_in - v_dot * inv_beta * (self._bound_sum @ q)) / denom

                    if self._binding.has_algebraic_equations() and v_dot * inv_beta != 0.0:
                        self._solve_empty_tank_equilibrium(
                            t, sec_idx, time_factor, c_in, c, q, flow_in, v_dot * inv_beta, denom, error_tol
                        )
                        return

            if self._binding.has_algebraic_equations():
                self._binding.consistent_initial_state(
                    t, sec_idx, c, q, error_tol, self._consistent_init_buffer
                )

    def _solve_empty_tank_equilibrium(
        self, t, sec_idx, time_factor, c_in, c, q, flow_in, bound_coeff, denom, error_tol, max_iter=50
    ):
        """
        Newton iteration on the coupled tank and binding rows at V = 0.

            denom * c + bound_coeff * sum_j q_j - F_in * c_in = 0
            binding residual(c, q) = 0

        Starts from the binding model's equilibrium for the current c.
        """
        n, sb = self._n_comp, self._stride_bound
        params = self._binding.parameter_values()
        self._binding.consistent_initial_state(t, sec_idx, c, q, error_tol, self._consistent_init_buffer)

        jac = DenseMatrix(n + sb, n + sb)
        step = np.zeros(n + sb)
        scale = max(1.0, float(np.max(np.abs(flow_in * c_in), initial=0.0)))

        for _ in range(max_iter):
            step[:n] = denom * c + bound_coeff * (self._bound_sum @ q) - flow_in * c_in
            step[n:] = np.asarray(self._binding.residual(t, sec_idx, time_factor, c, q, None, params), dtype=float)
            if np.max(np.abs(step)) <= error_tol * scale:
                return

            jac.set_all(0.0)
            for i in range(n):
                jac[i, i] = denom
            jac[:n, n:] = bound_coeff * self._bound_sum
            self._binding.analytic_jacobian(t, sec_idx, c, q, params, jac, n)
            if not (jac.factorize() and jac.solve(step)):
                warnings.warn(
                    "Singular Jacobian in consistent initialization of empty tank, state is not consistent",
                    RuntimeWarning,
                )
                return
            c -= step[:n]
            q -= step[n:]

        logger.debug("Empty tank equilibrium did not converge in %d iterations", max_iter)

    def lean_consistent_initial_state(
        self,
        t: float,
        sec_idx: int,
        time_factor: float,
        y: np.ndarray,
        ad_res: Optional[ADVector] = None,
        ad_y: Optional[ADVector] = None,
        ad_dir_offset: int = 0,
        error_tol: float = 1e-12,
    ):
        self.consistent_initial_state(t, sec_idx, time_factor, y, ad_res, ad_y, ad_dir_offset, error_tol)

    def consistent_initial_time_derivative(
        self, t: float, sec_idx: int, time_factor: float, y: np.ndarray, y_dot: np.ndarray
    ):
        """
        Compute consistent time derivatives, in place.

        On entry y_dot holds the residual evaluated without time derivatives,
        residual(t, sec_idx, time_factor, y, None, ...). On exit it holds
        dy/dt such that the differential equations are satisfied.

        At V = 0 the tank equation is differentiated once more, giving

            (2 * dV/dt + F_out) * dc/dt = F_in * dc_in/dt

        The inlet derivative dc_in/dt is not available here and is set to
        zero before use; if the coefficient vanishes dc/dt is set to zero.
        """
        with self._evaluation():
            n, sb = self._n_comp, self._stride_bound
            c = y[n : 2 * n]
            q = y[2 * n : 2 * n + sb]
            v = y[2 * n + sb]
            c_dot = y_dot[n : 2 * n]
            q_dot = y_dot[2 * n : 2 * n + sb]

            flow_in = self._flow_rate_in.value
            flow_out = self._flow_rate_out.value
            inv_beta = 1.0 / self._porosity.value - 1.0

            # time_factor * dV/dt
            v_dot = flow_in - flow_out - self._cur_flow_rate_filter.value
            y_dot[2 * n + sb] = v_dot / time_factor

            # Kinetic bound states: time_factor * dq/dt + f(c, q) = 0
            if self._binding.is_kinetic:
                q_dot[:] = -q_dot / time_factor
            else:
                # Approximation: dq/dt of the isotherm is not propagated, so the
                # tank dc/dt below ignores the bound-phase uptake rate
                q_dot[:] = 0.0

            if v == 0.0:
                denom = 2.0 * v_dot + flow_out
                if denom == 0.0:
                    # F_in = F_filter = F_out = 0
                    c_dot[:] = 0.0
                else:
                    factor = flow_in / denom
                    # TODO: pass dc_in/dt in from the flow sheet instead of assuming zero
                    y_dot[:n] = 0.0
                    c_dot[:] = y_dot[:n] * factor
            else:
                # Tank residual: time_factor * (V * dc/dt + ...) + r0 = 0, r0 = c_dot on entry
                q_sum = self._bound_sum @ q
                q_dot_sum = self._bound_sum @ q_dot
                c_dot[:] = (-c_dot / time_factor - v_dot / time_factor * (c + inv_beta * q_sum)) / v - inv_beta * q_dot_sum

    def consistent_initial_sensitivity(
        self,
        t: float,
        sec_idx: int,
        time_factor: float,
        y: np.ndarray,
        y_dot: np.ndarray,
        sens_y: Sequence[np.ndarray],
        sens_y_dot: Sequence[np.ndarray],
        ad_res: ADVector,
    ):
        """
        Consistent initial time derivatives of the forward sensitivities.

        Solves (dF/dyDot) * sDot = -(dF/dy) * s - dF/dp for every parameter,
        where dF/dp is read from direction ``param`` of ad_res (as filled by
        residual_sens_fwd_ad_only or residual_sens_fwd_with_jacobian) and
        dF/dy is the current Jacobian.
        """
        with self._evaluation():
            n = self._n_comp
            n_dofs = self.num_dofs()

            mat = DenseMatrix(self.num_pure_dofs(), self.num_pure_dofs())
            self.add_time_derivative_jacobian(t, time_factor, y, y_dot, mat)
            factorized = mat.factorize()
            if not factorized:
                warnings.warn(
                    "Time derivative Jacobian is singular (zero volume?), "
                    "sensitivity time derivatives are not made consistent",
                    RuntimeWarning,
                )

            for param, (s, s_dot) in enumerate(zip(sens_y, sens_y_dot)):
                # -(dF/dy) * s - dF/dp
                self._multiply_with_jacobian(s, -1.0, 0.0, s_dot)
                s_dot[n:n_dofs] -= ad_res.derivatives[n:n_dofs, param]

                if factorized:
                    mat.solve(s_dot[n:n_dofs])

    def lean_consistent_initial_sensitivity(
        self,
        t: float,
        sec_idx: int,
        time_factor: float,
        y: np.ndarray,
        y_dot: np.ndarray,
        sens_y: Sequence[np.ndarray],
        sens_y_dot: Sequence[np.ndarray],
        ad_res: ADVector,
    ):
        self.consistent_initial_sensitivity(t, sec_idx, time_factor, y, y_dot, sens_y, sens_y_dot, ad_res)

    # ========================================================================
    # Residual
    # ========================================================================

    def _residual_kernel(self, t: float, sec_idx: int, time_factor: float, y, y_dot, params):
        n, sb = self._n_comp, self._stride_bound
        y = jnp.asarray(y)

        c_in = y[:n]
        c = y[n : 2 * n]
        q = y[2 * n : 2 * n + sb]
        v = y[2 * n + sb]

        flow_in = params["flow_in"]
        flow_out = params["flow_out"]
        inv_beta = 1.0 / params["porosity"] - 1.0

        if y_dot is not None:
            y_dot = jnp.asarray(y_dot)
            c_dot = y_dot[n : 2 * n]
            q_dot = y_dot[2 * n : 2 * n + sb]
            v_dot = y_dot[2 * n + sb]

            q_sum = jnp.matmul(self._bound_sum, q)
            q_dot_sum = jnp.matmul(self._bound_sum, q_dot)
            res_c = time_factor * ((c_dot + inv_beta * q_dot_sum) * v + v_dot * (c + inv_beta * q_sum))
            res_c = res_c - flow_in * c_in + flow_out * c
        else:
            q_dot = None
            v_dot = 0.0
            res_c = -flow_in * c_in + flow_out * c

        res_q = self._binding.residual(t, sec_idx, time_factor, c, q, q_dot, params["binding"])
        res_v = time_factor * v_dot - flow_in + flow_out + params["flow_filter"]

        return jnp.concatenate([c_in, res_c, jnp.reshape(res_q, (sb,)), jnp.reshape(res_v, (1,))])

    def _residual_plain(self, t, sec_idx, time_factor, y, y_dot, res, count=True):
        if count:
            self._stats["residual_calls"] += 1
        values = self._residual_kernel(t, sec_idx, time_factor, y, y_dot, self._param_primals())
        res[: self.num_dofs()] = np.asarray(values)

    def _residual_ad(self, t, sec_idx, time_factor, y, y_dot, ad_res, ad_y, param_sensitivity):
        """Evaluate with AD types; state seeds from ad_y (if given), parameter seeds if requested."""
        self._stats["residual_calls"] += 1
        self._stats["ad_evaluations"] += 1

        n_dofs = self.num_dofs()
        n_dirs = ad_res.n_dirs
        if ad_y is not None and ad_y.n_dirs != n_dirs:
            raise ValueError(f"AD vectors disagree on directions: {ad_y.n_dirs} vs {n_dirs}")

        primals = self._param_primals()
        param_tangents = self._param_tangents(n_dirs) if param_sensitivity else self._zero_tangents(primals, n_dirs)
        state_tangents = ad_y.derivatives[:n_dofs].T if ad_y is not None else np.zeros((n_dirs, n_dofs))

        def kernel(state, params):
            return self._residual_kernel(t, sec_idx, time_factor, state, y_dot, params)

        values, derivatives = evaluate_directional(
            kernel, (np.asarray(y[:n_dofs], dtype=float), primals), (state_tangents, param_tangents)
        )
        ad_res.values[:n_dofs] = values
        ad_res.derivatives[:n_dofs] = derivatives

    def residual(
        self, t: float, sec_idx: int, time_factor: float, y: np.ndarray, y_dot: Optional[np.ndarray], res: np.ndarray
    ) -> int:
        """Residual without Jacobian update; y_dot may be None. Returns 0."""
        with self._evaluation():
            self._residual_plain(t, sec_idx, time_factor, y, y_dot, res)
        return 0

    def residual_ad(
        self,
        t: float,
        sec_idx: int,
        time_factor: float,
        y: np.ndarray,
        y_dot: Optional[np.ndarray],
        res: Optional[np.ndarray],
        ad_res: Optional[ADVector],
        ad_y: Optional[ADVector],
        ad_dir_offset: int,
        update_jacobian: bool,
        param_sensitivity: bool,
    ) -> int:
        """
        Residual with optional Jacobian update and parameter sensitivities.

        Args:
            res: Residual output (may be None if only AD results are needed)
            ad_res: AD residual; required for the AD Jacobian and for
                parameter sensitivities
            ad_y: Seeded AD state (see prepare_ad_vectors); required for
                the AD Jacobian
            ad_dir_offset: Number of directions used for sensitivities
            update_jacobian: Refresh dF/dy and mark the Newton matrix stale
            param_sensitivity: Propagate parameter seeds into ad_res

        Returns:
            0 on success
        """
        with self._evaluation():
            return self._residual_dispatch(
                t, sec_idx, time_factor, y, y_dot, res, ad_res, ad_y, ad_dir_offset, update_jacobian, param_sensitivity
            )

    def _residual_dispatch(
        self, t, sec_idx, time_factor, y, y_dot, res, ad_res, ad_y, ad_dir_offset, update_jacobian, param_sensitivity
    ) -> int:
        n_dofs = self.num_dofs()

        if not update_jacobian:
            if param_sensitivity:
                reset_ad(ad_res, n_dofs)
                self._residual_ad(t, sec_idx, time_factor, y, y_dot, ad_res, None, True)
                if res is not None:
                    copy_from_ad(ad_res, res, n_dofs)
            else:
                self._residual_plain(t, sec_idx, time_factor, y, y_dot, res)
            return 0

        self._factorize_jac = True
        self._stats["jacobian_updates"] += 1

        if self._analytic_jac:
            if param_sensitivity:
                reset_ad(ad_res, n_dofs)
                self._residual_ad(t, sec_idx, time_factor, y, y_dot, ad_res, None, True)
                if res is not None:
                    copy_from_ad(ad_res, res, n_dofs)
            else:
                self._residual_plain(t, sec_idx, time_factor, y, y_dot, res)
            self._assemble_analytic_jacobian(t, sec_idx, time_factor, y, y_dot)
            return 0

        # Jacobian via AD: keep the seeds of ad_y, overwrite its values
        copy_to_ad(y, ad_y, n_dofs)
        reset_ad(ad_res, n_dofs)
        self._residual_ad(t, sec_idx, time_factor, ad_y.values, y_dot, ad_res, ad_y, param_sensitivity)

        if self._check_analytic_jacobian and res is not None:
            # Same evaluation as the AD pass above, counted once
            self._residual_plain(t, sec_idx, time_factor, y, y_dot, res, count=False)
            self._assemble_analytic_jacobian(t, sec_idx, time_factor, y, y_dot)
            self._check_analytic_jacobian_against_ad(ad_res, ad_dir_offset)
        elif res is not None:
            copy_from_ad(ad_res, res, n_dofs)

        self._extract_jacobian_from_ad(ad_res, ad_dir_offset)
        return 0

    def residual_with_jacobian(
        self,
        t: float,
        sec_idx: int,
        time_factor: float,
        y: np.ndarray,
        y_dot: Optional[np.ndarray],
        res: np.ndarray,
        ad_res: Optional[ADVector] = None,
        ad_y: Optional[ADVector] = None,
        ad_dir_offset: int = 0,
    ) -> int:
        return self.residual_ad(t, sec_idx, time_factor, y, y_dot, res, ad_res, ad_y, ad_dir_offset, True, False)

    def residual_sens_fwd_ad_only(
        self, t: float, sec_idx: int, time_factor: float, y: np.ndarray, y_dot: Optional[np.ndarray], ad_res: ADVector
    ) -> int:
        """Residual with parameter seeds propagated into ad_res (dF/dp in directions)."""
        with self._evaluation():
            self._residual_ad(t, sec_idx, time_factor, y, y_dot, ad_res, None, True)
        return 0

    def residual_sens_fwd_with_jacobian(
        self,
        t: float,
        sec_idx: int,
        time_factor: float,
        y: np.ndarray,
        y_dot: Optional[np.ndarray],
        ad_res: ADVector,
        ad_y: Optional[ADVector] = None,
        ad_dir_offset: int = 0,
    ) -> int:
        """Parameter sensitivities and Jacobian update in one evaluation."""
        return self.residual_ad(t, sec_idx, time_factor, y, y_dot, None, ad_res, ad_y, ad_dir_offset, True, True)

    def residual_sens_fwd_combine(
        self,
        t: float,
        sec_idx: int,
        time_factor: float,
        y: np.ndarray,
        y_dot: np.ndarray,
        y_s: Sequence[np.ndarray],
        y_s_dot: Sequence[np.ndarray],
        res_s: Sequence[np.ndarray],
        ad_res: ADVector,
    ) -> int:
        """
        Sensitivity residuals (dF/dy) * s + (dF/dyDot) * sDot + dF/dp.

        dF/dp of parameter ``param`` is read from AD direction ``param`` of
        ad_res; dF/dy is the current Jacobian.
        """
        with self._evaluation():
            n_dofs = self.num_dofs()
            self._jac_dot.set_all(0.0)
            self.add_time_derivative_jacobian(t, time_factor, y, y_dot, self._jac_dot)

            tmp1 = np.zeros(n_dofs)
            tmp2 = np.zeros(n_dofs)
            for param, (s, s_dot, out) in enumerate(zip(y_s, y_s_dot, res_s)):
                self._multiply_with_jacobian(s, 1.0, 0.0, tmp1)
                self._multiply_with_derivative_jacobian(s_dot, tmp2)
                out[:n_dofs] = tmp1 + tmp2 + ad_res.derivatives[:n_dofs, param]
        return 0

    # ========================================================================
    # Jacobian
    # ========================================================================

    def _assemble_analytic_jacobian(self, t, sec_idx, time_factor, y, y_dot):
        n, sb = self._n_comp, self._stride_bound
        jac = self._jac
        jac.set_all(0.0)

        c = y[n : 2 * n]
        q = y[2 * n : 2 * n + sb]
        if y_dot is not None:
            c_dot = y_dot[n : 2 * n]
            q_dot = y_dot[2 * n : 2 * n + sb]
            v_dot = y_dot[2 * n + sb]
        else:
            c_dot = np.zeros(n)
            q_dot = np.zeros(sb)
            v_dot = 0.0

        flow_out = self._flow_rate_out.value
        inv_beta = 1.0 / self._porosity.value - 1.0
        v_col = n + sb

        for i in range(n):
            jac[i, i] = time_factor * v_dot + flow_out

            start = n + self._bound_offset[i]
            stop = start + self._n_bound[i]
            jac[i, start:stop] = time_factor * v_dot * inv_beta

            q_dot_sum = q_dot[start - n : stop - n].sum()
            jac[i, v_col] = time_factor * (c_dot[i] + inv_beta * q_dot_sum)

        self._binding.analytic_jacobian(t, sec_idx, c, q, self._binding.parameter_values(), jac, n)

    def add_time_derivative_jacobian(
        self, t: float, time_factor: float, y: np.ndarray, y_dot: Optional[np.ndarray], mat: DenseMatrix, alpha: float = 1.0
    ):
        """Add alpha * dF/dyDot (over the pure DOFs) to mat."""
        n, sb = self._n_comp, self._stride_bound
        c = y[n : 2 * n]
        q = y[2 * n : 2 * n + sb]
        v = y[2 * n + sb]

        inv_beta = 1.0 / self._porosity.value - 1.0
        time_v = alpha * time_factor * v
        v_col = n + sb

        for i in range(n):
            mat[i, i] += time_v

            start = n + self._bound_offset[i]
            stop = start + self._n_bound[i]
            mat[i, start:stop] += time_v * inv_beta

            q_sum = q[start - n : stop - n].sum()
            mat[i, v_col] += alpha * time_factor * (c[i] + inv_beta * q_sum)

        self._binding.jacobian_add_discretized(alpha * time_factor, mat, n)

        mat[v_col, v_col] += alpha * time_factor

    def _extract_jacobian_from_ad(self, ad_res: ADVector, ad_dir_offset: int):
        extract_dense_jacobian_from_ad(ad_res.segment(self._n_comp), ad_dir_offset, self._jac)

    def _check_analytic_jacobian_against_ad(self, ad_res: ADVector, ad_dir_offset: int) -> float:
        """Compare the analytic Jacobian (in self._jac) with the AD one."""
        diff = compare_dense_jacobian_with_ad(ad_res.segment(self._n_comp), ad_dir_offset, self._jac)
        logger.debug("AD dir offset: %d diff: %g", ad_dir_offset, diff)

        self._stats["last_jacobian_deviation"] = diff
        prev = self._stats["max_jacobian_deviation"]
        self._stats["max_jacobian_deviation"] = diff if np.isnan(prev) else max(prev, diff)
        return diff

    def prepare_ad_vectors(self, ad_res: Optional[ADVector], ad_y: Optional[ADVector], ad_dir_offset: int):
        """Seed one direction per pure DOF on ad_y (inlet DOFs stay unseeded)."""
        if ad_y is None:
            return
        n_var = self.num_pure_dofs()
        prepare_ad_vector_seeds_for_dense_matrix(ad_y.segment(self._n_comp), ad_dir_offset, n_var, n_var)

    def _multiply_with_jacobian(self, y_s, alpha, beta, ret):
        n = self._n_comp
        n_dofs = self.num_dofs()
        flow_in = self._flow_rate_in.value

        # Inlet DOFs
        ret[:n] = alpha * y_s[:n] if beta == 0.0 else alpha * y_s[:n] + beta * ret[:n]

        # Main body, then inlet coupling into the tank rows
        self._jac.multiply_vector(y_s[n:n_dofs], alpha, beta, ret[n:n_dofs])
        ret[n : 2 * n] -= alpha * flow_in * y_s[:n]

    def multiply_with_jacobian(
        self,
        t: float,
        sec_idx: int,
        time_factor: float,
        y: np.ndarray,
        y_dot: np.ndarray,
        y_s: np.ndarray,
        alpha: float,
        beta: float,
        ret: np.ndarray,
    ):
        """ret := alpha * (dF/dy) * y_s + beta * ret, using the current Jacobian."""
        with self._evaluation():
            self._multiply_with_jacobian(y_s, alpha, beta, ret)

    def _multiply_with_derivative_jacobian(self, s_dot, ret):
        n = self._n_comp
        n_dofs = self.num_dofs()
        # Inlet DOFs are algebraic
        ret[:n] = 0.0
        ret[n:n_dofs] = self._jac_dot.multiply_vector(s_dot[n:n_dofs])

    def multiply_with_derivative_jacobian(
        self,
        t: float,
        sec_idx: int,
        time_factor: float,
        y: np.ndarray,
        y_dot: np.ndarray,
        s_dot: np.ndarray,
        ret: np.ndarray,
    ):
        """ret := (dF/dyDot) * s_dot."""
        with self._evaluation():
            self._jac_dot.set_all(0.0)
            self.add_time_derivative_jacobian(t, time_factor, y, y_dot, self._jac_dot)
            self._multiply_with_derivative_jacobian(s_dot, ret)

    # ========================================================================
    # Newton support
    # ========================================================================

    def linear_solve(
        self,
        t: float,
        time_factor: float,
        alpha: float,
        tol: float,
        rhs: np.ndarray,
        weight: Optional[np.ndarray],
        y: np.ndarray,
        y_dot: np.ndarray,
        res: Optional[np.ndarray] = None,
    ) -> int:
        """
        Solve (dF/dy + alpha * dF/dyDot) x = rhs in place.

        The inlet rows are eliminated by back substitution first. The Newton
        matrix is refactorized only if a Jacobian update happened since the
        last factorization.

        Returns:
            0 on success, 1 if the factorization or solve failed
        """
        with self._evaluation():
            n = self._n_comp
            n_dofs = self.num_dofs()
            flow_in = self._flow_rate_in.value

            # Inlet equations by back substitution
            rhs[n : 2 * n] += flow_in * rhs[:n]

            success = True
            if self._factorize_jac:
                self._factorize_jac = False
                self._jac_fact.copy_from(self._jac)
                self.add_time_derivative_jacobian(t, time_factor, y, y_dot, self._jac_fact, alpha)
                success = self._jac_fact.factorize()
                self._stats["factorizations"] += 1

            success = success and self._jac_fact.solve(rhs[n:n_dofs])
            return 0 if success else 1

    # ========================================================================
    # Solution export
    # ========================================================================

    def _exporter(self, solution: Optional[np.ndarray]) -> StirredTankExporter:
        return StirredTankExporter(self._n_comp, self._n_bound, self._stride_bound, self._bound_offset, solution)

    def report_solution(self, recorder: SolutionRecorder, solution: np.ndarray):
        recorder.begin_unit_operation(self._unit_op_idx, self, self._exporter(solution))
        recorder.end_unit_operation()

    def report_solution_structure(self, recorder: SolutionRecorder):
        recorder.unit_operation_structure(self._unit_op_idx, self, self._exporter(None))

    # ========================================================================
    # Statistics
    # ========================================================================

    @staticmethod
    def _empty_stats() -> ModelStats:
        return {
            "residual_calls": 0,
            "jacobian_updates": 0,
            "ad_evaluations": 0,
            "factorizations": 0,
            "last_jacobian_deviation": float("nan"),
            "max_jacobian_deviation": float("nan"),
        }

    def get_stats(self) -> ModelStats:
        return dict(self._stats)

    def reset_stats(self):
        self._stats = self._empty_stats()

    def __repr__(self) -> str:
        return (
            f"StirredTankModel(unit_op_idx={self._unit_op_idx}, n_comp={self._n_comp}, "
            f"stride_bound={self._stride_bound}, state={self._state.value})"
        )
