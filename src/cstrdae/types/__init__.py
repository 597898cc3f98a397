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
Type definitions for the stirred tank DAE package.

- Core aliases: ArrayLike, StateVector, ResidualVector, ScalarLike
- Result dictionaries: ModelStats
- Parameter identity: ParameterId and the index sentinels
"""

from .core import ArrayLike, ModelStats, ParameterValues, ResidualVector, ScalarLike, StateVector
from .parameters import (
    BOUND_PHASE_INDEP,
    COMP_INDEP,
    REACTION_INDEP,
    SECTION_INDEP,
    UNIT_OP_INDEP,
    ParameterId,
    make_param_id,
)

__all__ = [
    "ArrayLike",
    "StateVector",
    "ResidualVector",
    "ScalarLike",
    "ModelStats",
    "ParameterValues",
    "ParameterId",
    "make_param_id",
    "UNIT_OP_INDEP",
    "COMP_INDEP",
    "BOUND_PHASE_INDEP",
    "REACTION_INDEP",
    "SECTION_INDEP",
]
