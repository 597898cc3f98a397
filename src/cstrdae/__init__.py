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
cstrdae: Stirred Tank DAE Model with Forward-Mode AD

Residual, Jacobian and sensitivity machinery of a continuous stirred tank
reactor unit operation for chromatography process simulation.

Subpackages
-----------
- ad: AD containers (JAX forward mode), seeding and Jacobian extraction
- linalg: dense, band and coordinate-list sparse matrices
- config: parameter providers
- models: the stirred tank model, binding models and solution export
- types: type aliases and parameter identifiers

Examples
--------
>>> from cstrdae import DictParameterProvider, StirredTankModel
>>> model = StirredTankModel()
>>> model.configure(DictParameterProvider({"NCOMP": 2}))
True
>>> model.num_dofs()
5
"""

from .ad import ActiveScalar, ADVector
from .config import DictParameterProvider, ParameterProvider
from .exceptions import InvalidParameterError
from .linalg import BandMatrix, DenseMatrix, SparseMatrix
from .models import (
    BindingModelFactory,
    ModelState,
    SolutionRecorder,
    StirredTankExporter,
    StirredTankModel,
)
from .types import ParameterId, make_param_id

__version__ = "0.1.0"

__all__ = [
    "StirredTankModel",
    "ModelState",
    "StirredTankExporter",
    "SolutionRecorder",
    "BindingModelFactory",
    "ParameterProvider",
    "DictParameterProvider",
    "InvalidParameterError",
    "ActiveScalar",
    "ADVector",
    "DenseMatrix",
    "BandMatrix",
    "SparseMatrix",
    "ParameterId",
    "make_param_id",
]
