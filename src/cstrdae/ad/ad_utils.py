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
AD Seeding, Jacobian Extraction and Jacobian Validation

One forward-mode AD evaluation of a residual with suitably seeded inputs
yields a whole Jacobian. For a banded Jacobian the columns are compressed:
column ``j`` is seeded in direction ``(diag_dir + j) mod stride`` with
``stride = lower + 1 + upper``. Inside the band of row ``r`` the columns
``r - lower ... r + upper`` are consecutive, hence hit pairwise different
directions, so ``stride`` directions recover the full band regardless of
the matrix size. The dense case is the uncompressed special case with one
direction per column.

All routines work on an ADVector: row ``i`` of ``ad_vec.derivatives``
holds the directional derivatives of entry ``i``. Directions below
``ad_dir_offset`` are left to other users (parameter sensitivities).

Comparison helpers treat the AD Jacobian as reference and return

    max_ij  |J_ana - J_ad| / |J_ad|   if J_ad != 0
            |J_ana - J_ad|            otherwise

They are diagnostics: they never raise on a mismatch.

Examples
--------
>>> y = ADVector.from_values([1.0, 2.0, 3.0], n_dirs=3)
>>> prepare_ad_vector_seeds_for_band_matrix(y, 0, 3, 1, 1, 1)
>>> y.derivatives
array([[0., 1., 0.],
       [0., 0., 1.],
       [1., 0., 0.]])
"""

import numpy as np

from .active import ADVector
from ..linalg.band_matrix import BandMatrix
from ..linalg.dense_matrix import DenseMatrix


def _band_direction(diag_dir: int, row: int, diag: int, stride: int) -> int:
    return (diag_dir + row + diag) % stride


def _relative_difference(analytic: float, ad: float) -> float:
    if ad != 0.0:
        return abs((analytic - ad) / ad)
    return abs(analytic - ad)


# ============================================================================
# Seeding
# ============================================================================


def prepare_ad_vector_seeds_for_band_matrix(
    ad_vec: ADVector,
    ad_dir_offset: int,
    rows: int,
    lower_bandwidth: int,
    upper_bandwidth: int,
    diag_dir: int,
):
    """
    Set band compressed seed vectors.

    Args:
        ad_vec: AD vector whose first ``rows`` entries are seeded
        ad_dir_offset: Directions reserved for other purposes
        rows: Number of Jacobian rows (entries to seed)
        lower_bandwidth: Number of subdiagonals of the Jacobian
        upper_bandwidth: Number of superdiagonals of the Jacobian
        diag_dir: Direction of the first diagonal element
    """
    stride = lower_bandwidth + 1 + upper_bandwidth
    if ad_vec.n_dirs < ad_dir_offset + stride:
        raise ValueError(
            f"ADVector has {ad_vec.n_dirs} directions, need {ad_dir_offset + stride}"
        )

    deriv = ad_vec.derivatives
    deriv[:rows, ad_dir_offset : ad_dir_offset + stride] = 0.0
    for col in range(rows):
        deriv[col, ad_dir_offset + (diag_dir + col) % stride] = 1.0


def prepare_ad_vector_seeds_for_dense_matrix(ad_vec: ADVector, ad_dir_offset: int, rows: int, cols: int):
    """
    Seed one direction per column: entry ``j`` gets direction ``offset + j``.

    Args:
        ad_vec: AD vector whose first ``cols`` entries are seeded
        ad_dir_offset: Directions reserved for other purposes
        rows: Number of Jacobian rows (kept for symmetry with the band case)
        cols: Number of Jacobian columns
    """
    if ad_vec.n_dirs < ad_dir_offset + cols:
        raise ValueError(
            f"ADVector has {ad_vec.n_dirs} directions, need {ad_dir_offset + cols}"
        )

    deriv = ad_vec.derivatives
    deriv[:cols, ad_dir_offset : ad_dir_offset + cols] = 0.0
    for col in range(cols):
        deriv[col, ad_dir_offset + col] = 1.0


# ============================================================================
# Extraction
# ============================================================================


def extract_banded_jacobian_from_ad(ad_vec: ADVector, ad_dir_offset: int, diag_dir: int, mat: BandMatrix):
    """Assemble a band matrix from an evaluation seeded for band compression."""
    lower = mat.lower_bandwidth
    stride = mat.stride
    deriv = ad_vec.derivatives
    for row in range(mat.rows):
        for diag in range(-lower, mat.upper_bandwidth + 1):
            direction = _band_direction(diag_dir, row, diag, stride)
            mat.set_centered(row, diag, deriv[row, ad_dir_offset + direction])


def extract_dense_jacobian_from_banded_ad(
    ad_vec: ADVector,
    row: int,
    ad_dir_offset: int,
    diag_dir: int,
    lower_bandwidth: int,
    upper_bandwidth: int,
    mat: DenseMatrix,
):
    """
    Extract a dense block of a band compressed Jacobian.

    The block's top left element is the diagonal element (row, row). Elements
    of the block outside the band are set to zero.
    """
    stride = lower_bandwidth + 1 + upper_bandwidth
    deriv = ad_vec.derivatives
    for i in range(mat.rows):
        eq = row + i
        for j in range(mat.columns):
            diag = j - i
            if -lower_bandwidth <= diag <= upper_bandwidth:
                direction = _band_direction(diag_dir, eq, diag, stride)
                mat[i, j] = deriv[eq, ad_dir_offset + direction]
            else:
                mat[i, j] = 0.0


def extract_dense_jacobian_from_ad(ad_vec: ADVector, ad_dir_offset: int, mat: DenseMatrix):
    """Copy a dense Jacobian seeded by prepare_ad_vector_seeds_for_dense_matrix()."""
    rows, cols = mat.rows, mat.columns
    mat[:, :] = ad_vec.derivatives[:rows, ad_dir_offset : ad_dir_offset + cols]


# ============================================================================
# Validation
# ============================================================================


def compare_banded_jacobian_with_ad(
    ad_vec: ADVector, ad_dir_offset: int, diag_dir: int, mat: BandMatrix
) -> float:
    """Maximum relative deviation of a band matrix from its AD counterpart."""
    lower = mat.lower_bandwidth
    stride = mat.stride
    deriv = ad_vec.derivatives
    max_diff = 0.0
    for row in range(mat.rows):
        for diag in range(-lower, mat.upper_bandwidth + 1):
            if not mat.in_range(row, diag):
                continue
            direction = _band_direction(diag_dir, row, diag, stride)
            ad_val = float(deriv[row, ad_dir_offset + direction])
            max_diff = max(max_diff, _relative_difference(mat.centered(row, diag), ad_val))
    return max_diff


def compare_dense_jacobian_with_banded_ad(
    ad_vec: ADVector,
    row: int,
    ad_dir_offset: int,
    diag_dir: int,
    lower_bandwidth: int,
    upper_bandwidth: int,
    mat: DenseMatrix,
) -> float:
    """Maximum relative deviation of a dense block from the band compressed AD Jacobian."""
    stride = lower_bandwidth + 1 + upper_bandwidth
    deriv = ad_vec.derivatives
    max_diff = 0.0
    for i in range(mat.rows):
        eq = row + i
        for j in range(mat.columns):
            diag = j - i
            if -lower_bandwidth <= diag <= upper_bandwidth:
                direction = _band_direction(diag_dir, eq, diag, stride)
                ad_val = float(deriv[eq, ad_dir_offset + direction])
            else:
                ad_val = 0.0
            max_diff = max(max_diff, _relative_difference(float(mat[i, j]), ad_val))
    return max_diff


def compare_dense_jacobian_with_ad(ad_vec: ADVector, ad_dir_offset: int, mat: DenseMatrix) -> float:
    """Maximum relative deviation of a dense Jacobian from its AD counterpart."""
    rows, cols = mat.rows, mat.columns
    ad_jac = ad_vec.derivatives[:rows, ad_dir_offset : ad_dir_offset + cols]
    analytic = mat.data
    if rows == 0 or cols == 0:
        return 0.0

    diff = np.abs(analytic - ad_jac)
    nonzero = ad_jac != 0.0
    diff[nonzero] /= np.abs(ad_jac[nonzero])
    return float(diff.max())


# ============================================================================
# Value transfer
# ============================================================================


def copy_from_ad(ad_vec: ADVector, dest: np.ndarray, size: int):
    """Copy the primal values of the first ``size`` entries."""
    dest[:size] = ad_vec.values[:size]


def copy_to_ad(src: np.ndarray, ad_vec: ADVector, size: int):
    """Copy values into an AD vector, keeping its derivatives (seeds)."""
    ad_vec.values[:size] = src[:size]


def reset_ad(ad_vec: ADVector, size: int):
    """Zero values and derivatives of the first ``size`` entries."""
    ad_vec.values[:size] = 0.0
    ad_vec.derivatives[:size, :] = 0.0
