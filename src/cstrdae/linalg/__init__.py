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
Matrix storage used by the unit operation models.

- DenseMatrix: dense Jacobians with LU factorization
- BandMatrix: band storage addressed relative to the main diagonal
- SparseMatrix: coordinate list builder for one-time assembly
"""

from .band_matrix import BandMatrix
from .dense_matrix import DenseMatrix
from .sparse_matrix import SparseMatrix

__all__ = ["BandMatrix", "DenseMatrix", "SparseMatrix"]
