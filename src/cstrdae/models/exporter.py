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
Solution Export

A unit operation reports its solution to a SolutionRecorder through an
exporter object. The exporter describes the structure (components, bound
states) and, when a solution vector is attached, hands out views of the
individual state blocks.

The recorder is driven push-style:

    recorder.begin_unit_operation(unit_op_idx, model, exporter)
    recorder.end_unit_operation()

and, for structure only,

    recorder.unit_operation_structure(unit_op_idx, model, exporter)
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import numpy as np


class StirredTankExporter:
    """
    Read-only view of a stirred tank state vector.

    Parameters
    ----------
    n_comp : int
        Number of components
    n_bound : Sequence[int]
        Bound states per component
    stride_bound : int
        Total number of bound states
    bound_offset : Sequence[int]
        Offset of the first bound state of each component
    solution : Optional[np.ndarray]
        State vector [c_in, c, q, V]; None for structure-only export
    """

    def __init__(
        self,
        n_comp: int,
        n_bound: Sequence[int],
        stride_bound: int,
        bound_offset: Sequence[int],
        solution: Optional[np.ndarray] = None,
    ):
        self._n_comp = n_comp
        self._n_bound = np.asarray(n_bound, dtype=int)
        self._stride_bound = stride_bound
        self._bound_offset = np.asarray(bound_offset, dtype=int)
        self._data = solution

    # Structure

    def has_mobile_phase(self) -> bool:
        return True

    def has_solid_phase(self) -> bool:
        return self._stride_bound > 0

    def has_volume(self) -> bool:
        return True

    @property
    def num_components(self) -> int:
        return self._n_comp

    @property
    def num_bound_states(self) -> int:
        return self._stride_bound

    @property
    def num_axial_cells(self) -> int:
        return 0

    @property
    def num_inlet_ports(self) -> int:
        return 1

    @property
    def bound_states_per_component(self) -> np.ndarray:
        return self._n_bound.copy()

    @property
    def bound_offset(self) -> np.ndarray:
        return self._bound_offset.copy()

    # Data

    @property
    def has_data(self) -> bool:
        return self._data is not None

    def _require_data(self) -> np.ndarray:
        if self._data is None:
            raise RuntimeError("Exporter has no solution attached")
        return self._data

    def inlet(self) -> np.ndarray:
        return self._require_data()[: self._n_comp]

    def concentration(self) -> np.ndarray:
        return self._require_data()[self._n_comp : 2 * self._n_comp]

    def solid_phase(self) -> np.ndarray:
        start = 2 * self._n_comp
        return self._require_data()[start : start + self._stride_bound]

    def volume(self) -> float:
        return float(self._require_data()[2 * self._n_comp + self._stride_bound])

    def __repr__(self) -> str:
        return (
            f"StirredTankExporter(n_comp={self._n_comp}, stride_bound={self._stride_bound}, "
            f"has_data={self.has_data})"
        )


class SolutionRecorder(ABC):
    """Receiver of unit operation solutions."""

    @abstractmethod
    def begin_unit_operation(self, unit_op_idx: int, model: Any, exporter: StirredTankExporter):
        pass

    @abstractmethod
    def end_unit_operation(self):
        pass

    @abstractmethod
    def unit_operation_structure(self, unit_op_idx: int, model: Any, exporter: StirredTankExporter):
        pass
