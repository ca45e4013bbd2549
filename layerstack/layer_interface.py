# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Configuration of a layer stack.

A stack of N layers is described by N + 1 `LayerInterface` entries: the
first describes the input (no connection type), each following one the
output of a layer.

A configuration can be read from JSON:

    [
        {"size": 4, "type": "dense"},
        {"size": 5, "connection": "GRU", "activation": "tanh"},
        {"size": 3, "connection": "Feedforward", "activation": "softmax"}
    ]

Keys other than size/sizes/type/connection/activation are variant options
(e.g. `rank` for SquaredDistance, `n_symbols`, `q` for TPR).
"""

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .activations import Activation, get_activation
from .errors import ConfigurationError
from .layer_types import ConnectionType, InputType

logger = logging.getLogger(__name__)

_KNOWN_KEYS = {"size", "sizes", "type", "connection", "connection_type", "activation"}


class LayerInterface:
    """
    Args:
        size: The size, for a single input/output.
        sizes: The sizes, for the multiple inputs of a merge layer.
        type: Encoding of the array (only meaningful on the input entry).
        connection_type: The layer variant; None only for the input entry.
        activation: Activation name or object.
        **options: Variant-specific options.
    """

    def __init__(
        self,
        size: Optional[int] = None,
        sizes: Optional[Sequence[int]] = None,
        type: Union[str, InputType] = InputType.DENSE,
        connection_type: Optional[Union[str, ConnectionType]] = None,
        activation: Optional[Union[str, Activation]] = None,
        **options: Any,
    ) -> None:
        if (size is None) == (sizes is None):
            raise ConfigurationError("Exactly one of size and sizes must be given.")
        self.sizes: List[int] = [int(size)] if size is not None else [int(s) for s in sizes]
        if not self.sizes or any(s <= 0 for s in self.sizes):
            raise ConfigurationError(f"Invalid sizes: {self.sizes}")
        try:
            self.type = InputType.from_name(type)
            self.connection_type = (
                None if connection_type is None else ConnectionType.from_name(connection_type)
            )
            self.activation = get_activation(activation)
        except (KeyError, ValueError) as exc:
            raise ConfigurationError(str(exc)) from exc
        self.options: Dict[str, Any] = dict(options)

    @property
    def size(self) -> int:
        """The size, which must be unique."""
        if len(self.sizes) != 1:
            raise ConfigurationError(f"Multiple sizes {self.sizes} where one is expected.")
        return self.sizes[0]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LayerInterface":
        options = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}
        return cls(
            size=data.get("size"),
            sizes=data.get("sizes"),
            type=data.get("type", InputType.DENSE),
            connection_type=data.get("connection", data.get("connection_type")),
            activation=data.get("activation"),
            **options,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if len(self.sizes) == 1:
            data["size"] = self.sizes[0]
        else:
            data["sizes"] = list(self.sizes)
        data["type"] = self.type.value
        if self.connection_type is not None:
            data["connection"] = self.connection_type.value
        if self.activation is not None:
            data["activation"] = self.activation.name
        data.update(self.options)
        return data

    def __repr__(self) -> str:
        return f"LayerInterface({self.to_dict()})"


def load_layers_configuration(
    source: Union[str, os.PathLike, Iterable[Mapping[str, Any]]]
) -> List[LayerInterface]:
    """
    Build the list of LayerInterface from a JSON file or from a list of dicts.

    Raises:
        ConfigurationError: If an entry is invalid.
    """
    if isinstance(source, (str, os.PathLike)):
        logger.debug("Loading layers configuration from %s", source)
        with open(source, "r", encoding="utf-8") as f:
            source = json.load(f)
    if not isinstance(source, (list, tuple)):
        raise ConfigurationError("A layers configuration must be a list of entries.")
    return [LayerInterface.from_dict(entry) for entry in source]
