# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

from enum import Enum
from typing import Union

import numpy as np

from .arrays import SparseArray, SparseBinaryArray


class InputType(Enum):
    """Encoding of a layer input."""

    DENSE = "dense"
    SPARSE = "sparse"
    SPARSE_BINARY = "sparse_binary"

    @classmethod
    def of(cls, values) -> "InputType":
        if isinstance(values, np.ndarray):
            return cls.DENSE
        if isinstance(values, SparseArray):
            return cls.SPARSE
        if isinstance(values, SparseBinaryArray):
            return cls.SPARSE_BINARY
        raise TypeError(f"Unsupported input array type: {type(values).__name__}")

    @classmethod
    def from_name(cls, name: Union[str, "InputType"]) -> "InputType":
        if isinstance(name, InputType):
            return name
        key = name.strip().lower().replace("-", "_")
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"Unknown input type: {name}")


class ConnectionType(Enum):
    """The closed set of layer variants."""

    FEEDFORWARD = "Feedforward"
    HIGHWAY = "Highway"
    NORM = "Norm"
    BATCH_NORM = "BatchNorm"
    SQUARED_DISTANCE = "SquaredDistance"

    CONCAT = "Concat"
    CONCAT_FEEDFORWARD = "ConcatFeedforward"
    SUM = "Sum"
    SUB = "Sub"
    AVG = "Avg"
    PRODUCT = "Product"
    AFFINE = "Affine"
    BIAFFINE = "Biaffine"

    SIMPLE_RECURRENT = "SimpleRecurrent"
    INDRNN = "IndRNN"
    GRU = "GRU"
    LSTM = "LSTM"
    CFN = "CFN"
    RAN = "RAN"
    DELTA_RNN = "DeltaRNN"
    LTM = "LTM"
    TPR = "TPR"

    @property
    def is_recurrent(self) -> bool:
        return self in _RECURRENT

    @property
    def is_merge(self) -> bool:
        return self in _MERGE

    @classmethod
    def from_name(cls, name: Union[str, "ConnectionType"]) -> "ConnectionType":
        """Resolve a connection type from its name, case-insensitively."""
        if isinstance(name, ConnectionType):
            return name
        key = name.strip().lower()
        for member in cls:
            if member.value.lower() == key or member.name.lower() == key:
                return member
        raise ValueError(f"Unknown connection type: {name}")


_RECURRENT = frozenset(
    {
        ConnectionType.SIMPLE_RECURRENT,
        ConnectionType.INDRNN,
        ConnectionType.GRU,
        ConnectionType.LSTM,
        ConnectionType.CFN,
        ConnectionType.RAN,
        ConnectionType.DELTA_RNN,
        ConnectionType.LTM,
        ConnectionType.TPR,
    }
)

_MERGE = frozenset(
    {
        ConnectionType.BATCH_NORM,
        ConnectionType.CONCAT,
        ConnectionType.CONCAT_FEEDFORWARD,
        ConnectionType.SUM,
        ConnectionType.SUB,
        ConnectionType.AVG,
        ConnectionType.PRODUCT,
        ConnectionType.AFFINE,
        ConnectionType.BIAFFINE,
    }
)
