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
Unit operation models.

- StirredTankModel: CSTR with variable volume and optional binding
- StirredTankExporter / SolutionRecorder: solution export
- binding: adsorption submodels
"""

from .binding import BindingModel, BindingModelFactory, LangmuirBinding, LinearBinding, NoBinding
from .exporter import SolutionRecorder, StirredTankExporter
from .stirred_tank import ModelState, StirredTankModel

__all__ = [
    "StirredTankModel",
    "ModelState",
    "StirredTankExporter",
    "SolutionRecorder",
    "BindingModel",
    "BindingModelFactory",
    "NoBinding",
    "LinearBinding",
    "LangmuirBinding",
]
