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
Parameter identifiers.

A parameter is addressed by its name plus the indices it depends on. Any index
that does not apply is set to the matching ``*_INDEP`` sentinel.

Examples
--------
>>> pid = make_param_id("POROSITY", unit_operation=0)
>>> pid.component == COMP_INDEP
True
>>> make_param_id("LIN_KA", 0, component=1, bound_phase=0)
ParameterId(name='LIN_KA', unit_operation=0, component=1, bound_phase=0, reaction=-1, section=-1)
"""

from dataclasses import dataclass, replace

UNIT_OP_INDEP = -1
COMP_INDEP = -1
BOUND_PHASE_INDEP = -1
REACTION_INDEP = -1
SECTION_INDEP = -1


@dataclass(frozen=True)
class ParameterId:
    """Hashable identity of a model parameter."""

    name: str
    unit_operation: int = UNIT_OP_INDEP
    component: int = COMP_INDEP
    bound_phase: int = BOUND_PHASE_INDEP
    reaction: int = REACTION_INDEP
    section: int = SECTION_INDEP

    def matches_unit(self, unit_op_idx: int) -> bool:
        """True if the parameter addresses the given unit operation (or any)."""
        return self.unit_operation in (unit_op_idx, UNIT_OP_INDEP)

    def for_unit(self, unit_op_idx: int) -> "ParameterId":
        """Bind a unit-independent id to the given unit operation."""
        if self.unit_operation == UNIT_OP_INDEP:
            return replace(self, unit_operation=unit_op_idx)
        return self


def make_param_id(
    name: str,
    unit_operation: int = UNIT_OP_INDEP,
    component: int = COMP_INDEP,
    bound_phase: int = BOUND_PHASE_INDEP,
    reaction: int = REACTION_INDEP,
    section: int = SECTION_INDEP,
) -> ParameterId:
    return ParameterId(name, unit_operation, component, bound_phase, reaction, section)
