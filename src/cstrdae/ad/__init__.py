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
Forward-mode automatic differentiation support.

- active: dual-valued containers and the JAX evaluation primitive
- ad_utils: seeding, Jacobian extraction and Jacobian comparison
"""

from .active import ActiveScalar, ADVector, as_active, evaluate_directional
from .ad_utils import (
    compare_banded_jacobian_with_ad,
    compare_dense_jacobian_with_ad,
    compare_dense_jacobian_with_banded_ad,
    copy_from_ad,
    copy_to_ad,
    extract_banded_jacobian_from_ad,
    extract_dense_jacobian_from_ad,
    extract_dense_jacobian_from_banded_ad,
    prepare_ad_vector_seeds_for_band_matrix,
    prepare_ad_vector_seeds_for_dense_matrix,
    reset_ad,
)

__all__ = [
    "ActiveScalar",
    "ADVector",
    "as_active",
    "evaluate_directional",
    "prepare_ad_vector_seeds_for_band_matrix",
    "prepare_ad_vector_seeds_for_dense_matrix",
    "extract_banded_jacobian_from_ad",
    "extract_dense_jacobian_from_banded_ad",
    "extract_dense_jacobian_from_ad",
    "compare_banded_jacobian_with_ad",
    "compare_dense_jacobian_with_banded_ad",
    "compare_dense_jacobian_with_ad",
    "copy_from_ad",
    "copy_to_ad",
    "reset_ad",
]
