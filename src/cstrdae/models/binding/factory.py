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
Binding Model Factory

Maps the ADSORPTION_MODEL string of a unit operation configuration to a
binding model class.

Examples
--------
>>> model = BindingModelFactory.create("LINEAR")
>>> model.name
'LINEAR'
>>> BindingModelFactory.create("DOES_NOT_EXIST") is None
True
"""

from typing import Dict, List, Optional, Type

from .base import BindingModel
from .langmuir import LangmuirBinding
from .linear import LinearBinding
from .none import NoBinding


class BindingModelFactory:
    """
    Registry of binding model variants.

    New variants can be added with register(); names are case-sensitive and
    follow the upper-case convention of the configuration files.
    """

    _MODELS: Dict[str, Type[BindingModel]] = {
        NoBinding.name: NoBinding,
        LinearBinding.name: LinearBinding,
        LangmuirBinding.name: LangmuirBinding,
    }

    @classmethod
    def create(cls, name: str) -> Optional[BindingModel]:
        """New instance of the named binding model, or None if unknown."""
        model_cls = cls._MODELS.get(name)
        if model_cls is None:
            return None
        return model_cls()

    @classmethod
    def register(cls, name: str, model_cls: Type[BindingModel]):
        if not (isinstance(model_cls, type) and issubclass(model_cls, BindingModel)):
            raise TypeError(f"{model_cls!r} is not a BindingModel subclass")
        cls._MODELS[name] = model_cls

    @classmethod
    def unregister(cls, name: str):
        cls._MODELS.pop(name, None)

    @classmethod
    def list_models(cls) -> List[str]:
        return sorted(cls._MODELS)
