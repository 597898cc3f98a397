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
Parameter Providers

Models read their configuration through the ParameterProvider interface:
typed getters keyed by upper-case parameter names, plus a scope stack for
nested groups (the binding model reads from the ``adsorption`` scope).

DictParameterProvider backs the interface with nested dictionaries, e.g.
parsed from JSON.

Examples
--------
>>> provider = DictParameterProvider({
...     "NCOMP": 2,
...     "ADSORPTION_MODEL": "LINEAR",
...     "adsorption": {"LIN_KA": [1.0, 2.0], "LIN_KD": [0.1, 0.2]},
... })
>>> provider.get_int("NCOMP")
2
>>> with provider.scope("adsorption"):
...     provider.get_double_array("LIN_KA")
[1.0, 2.0]
"""

import json
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Union

from ..ad.active import ActiveScalar


class ParameterProvider(ABC):
    """
    Abstract read-only access to model configuration.

    Getters raise KeyError if the key does not exist in the current scope
    and TypeError/ValueError if the value cannot be converted.
    """

    @abstractmethod
    def exists(self, name: str) -> bool:
        pass

    @abstractmethod
    def _get(self, name: str) -> Any:
        pass

    @abstractmethod
    def push_scope(self, name: str):
        pass

    @abstractmethod
    def pop_scope(self):
        pass

    @contextmanager
    def scope(self, name: str) -> Iterator["ParameterProvider"]:
        """Context manager pairing push_scope() and pop_scope()."""
        self.push_scope(name)
        try:
            yield self
        finally:
            self.pop_scope()

    def is_array(self, name: str) -> bool:
        return isinstance(self._get(name), (list, tuple))

    def get_int(self, name: str) -> int:
        value = self._get(name)
        if isinstance(value, (list, tuple)):
            value = value[0]
        return int(value)

    def get_bool(self, name: str) -> bool:
        value = self._get(name)
        if isinstance(value, (list, tuple)):
            value = value[0]
        return bool(value)

    def get_double(self, name: str) -> float:
        value = self._get(name)
        if isinstance(value, (list, tuple)):
            value = value[0]
        return float(value)

    def get_string(self, name: str) -> str:
        return str(self._get(name))

    def get_int_array(self, name: str) -> List[int]:
        value = self._get(name)
        if not isinstance(value, (list, tuple)):
            value = [value]
        return [int(v) for v in value]

    def get_double_array(self, name: str) -> List[float]:
        value = self._get(name)
        if not isinstance(value, (list, tuple)):
            value = [value]
        return [float(v) for v in value]


class DictParameterProvider(ParameterProvider):
    """
    ParameterProvider backed by (nested) dictionaries.

    Parameters
    ----------
    data : dict
        Top-level parameter group. Nested dictionaries are scopes.
    """

    def __init__(self, data: Dict[str, Any]):
        self._root = data
        self._stack: List[Dict[str, Any]] = [data]

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "DictParameterProvider":
        with open(path, "r") as f:
            return cls(json.load(f))

    @property
    def _current(self) -> Dict[str, Any]:
        return self._stack[-1]

    def exists(self, name: str) -> bool:
        return name in self._current

    def _get(self, name: str) -> Any:
        try:
            return self._current[name]
        except KeyError:
            raise KeyError(f"Parameter '{name}' not found in current scope") from None

    def push_scope(self, name: str):
        group = self._get(name)
        if not isinstance(group, dict):
            raise TypeError(f"'{name}' is not a parameter group")
        self._stack.append(group)

    def pop_scope(self):
        if len(self._stack) == 1:
            raise RuntimeError("Cannot pop the root scope")
        self._stack.pop()

    def __repr__(self) -> str:
        return f"DictParameterProvider(keys={sorted(self._current)})"


def read_scalar_parameter_or_array(
    provider: ParameterProvider, name: str, multiplicity: int = 1
) -> List[ActiveScalar]:
    """
    Read a parameter that is either a scalar or an array.

    Arrays are read as given; a scalar is replicated ``multiplicity`` times.
    """
    if provider.is_array(name):
        return [ActiveScalar(v) for v in provider.get_double_array(name)]
    value = provider.get_double(name)
    return [ActiveScalar(value) for _ in range(multiplicity)]
