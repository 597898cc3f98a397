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
Exceptions raised by the stirred tank model and its collaborators.

Only configuration problems get a dedicated type. Everything else uses the
Python built-ins (ValueError, IndexError, RuntimeError) or integer status
codes for numeric failures that the outer solver is expected to handle.
"""


class InvalidParameterError(ValueError):
    """
    Raised when a configuration value is missing, malformed or unknown.

    Examples
    --------
    >>> raise InvalidParameterError("Unknown binding model FOO")
    Traceback (most recent call last):
        ...
    cstrdae.exceptions.InvalidParameterError: Unknown binding model FOO
    """
