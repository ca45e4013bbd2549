# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Layer parameters and their gradients.

A `LayerParameters` object holds the weights and biases of one layer
position. In a recurrent network it is shared by reference by every time
step; gradients from the steps are summed in a `ParamsErrorsCollector`.
"""

import copy
import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .initializers import Initializer

logger = logging.getLogger(__name__)


class ParamsArray:
    """
    A named parameter tensor with a fixed shape.

    Attributes:
        values: The parameter values (float64).
        name: Label used in logs and reprs.
    """

    def __init__(self, values: np.ndarray, name: str = "") -> None:
        self.values = np.array(values, dtype=np.float64, copy=True)
        self.name = name

    @classmethod
    def zeros(cls, shape: Tuple[int, ...], name: str = "") -> "ParamsArray":
        return cls(np.zeros(shape), name=name)

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.values.shape

    def assign(self, values: np.ndarray) -> None:
        """Overwrite the values in place, keeping the shape."""
        values = np.asarray(values, dtype=np.float64)
        if values.shape != self.values.shape:
            raise ValueError(
                f"Cannot assign shape {values.shape} to parameter {self.name!r} of shape {self.values.shape}"
            )
        self.values[...] = values

    def __repr__(self) -> str:
        return f"ParamsArray({self.name!r}, shape={self.shape})"


class ParamsErrors:
    """The gradient of one `ParamsArray`."""

    def __init__(self, params: ParamsArray, values: np.ndarray) -> None:
        values = np.asarray(values, dtype=np.float64)
        if values.shape != params.shape:
            raise ValueError(
                f"Errors shape {values.shape} != parameter {params.name!r} shape {params.shape}"
            )
        self.params = params
        self.values = values

    def __repr__(self) -> str:
        return f"ParamsErrors({self.params.name!r})"


class ParamsErrorsList(list):
    """The parameter gradients returned by one backward."""

    def get(self, params: ParamsArray) -> ParamsErrors:
        for errors in self:
            if errors.params is params:
                return errors
        raise KeyError(f"No errors for parameter {params.name!r}")


class ParamsErrorsCollector:
    """
    Sums parameter gradients across time steps (and sequences).

    Gradients of the same `ParamsArray` are added, never overwritten. The
    accumulation is serialized by a lock so several sequences processed in
    parallel may share one collector.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._errors: Dict[int, ParamsErrors] = {}

    def accumulate(self, errors_list: Iterable[ParamsErrors]) -> None:
        with self._lock:
            for errors in errors_list:
                key = id(errors.params)
                current = self._errors.get(key)
                if current is None:
                    self._errors[key] = ParamsErrors(errors.params, errors.values.copy())
                else:
                    current.values += errors.values

    def get_errors(self, params: ParamsArray) -> ParamsErrors:
        with self._lock:
            try:
                return self._errors[id(params)]
            except KeyError:
                raise KeyError(f"No errors collected for parameter {params.name!r}") from None

    def get_all(self) -> ParamsErrorsList:
        with self._lock:
            return ParamsErrorsList(self._errors.values())

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()

    def __len__(self) -> int:
        return len(self._errors)


class LinearParams:
    """Weights (out, in) and biases (out) of a linear unit."""

    def __init__(self, input_size: int, output_size: int, name: str = "") -> None:
        self.w = ParamsArray.zeros((output_size, input_size), name=f"{name}.w")
        self.b = ParamsArray.zeros((output_size,), name=f"{name}.b")


class RecurrentLinearParams(LinearParams):
    """A linear unit with an additional recurrent matrix (out, out)."""

    def __init__(self, input_size: int, output_size: int, name: str = "") -> None:
        super().__init__(input_size, output_size, name=name)
        self.wr = ParamsArray.zeros((output_size, output_size), name=f"{name}.wr")


class LayerParameters:
    """
    Base of the per-variant parameter containers.

    Subclasses create their tensors in `__init__` and register them in
    `weights_list` / `biases_list`, which fix the order in which gradients
    are returned by a layer backward.

    Parameters
    ----------
    input_sizes : sequence of int
        Size of each input (more than one only for merge layers).
    output_size : int
        Size of the output.
    """

    def __init__(self, input_sizes: Sequence[int], output_size: int) -> None:
        self.input_sizes: List[int] = [int(s) for s in input_sizes]
        self.output_size = int(output_size)
        self.weights_list: List[ParamsArray] = []
        self.biases_list: List[ParamsArray] = []

    @property
    def input_size(self) -> int:
        return self.input_sizes[0]

    @property
    def params_list(self) -> List[ParamsArray]:
        return self.weights_list + self.biases_list

    def _register_linear(self, unit: LinearParams) -> None:
        self.weights_list.append(unit.w)
        if isinstance(unit, RecurrentLinearParams):
            self.weights_list.append(unit.wr)
        self.biases_list.append(unit.b)

    def initialize(
        self,
        weights_initializer: Optional[Initializer] = None,
        biases_initializer: Optional[Initializer] = None,
    ) -> None:
        """Fill weights and biases in place; a missing initializer means zeros."""
        logger.debug(
            "Initializing %s (%d weights, %d biases)",
            type(self).__name__,
            len(self.weights_list),
            len(self.biases_list),
        )
        for params, initializer in [(p, weights_initializer) for p in self.weights_list] + [
            (p, biases_initializer) for p in self.biases_list
        ]:
            if initializer is None:
                params.values.fill(0.0)
            else:
                initializer.initialize(params.values)

    def set_params(self, values: Sequence[np.ndarray]) -> None:
        """Assign all tensors in `params_list` order."""
        plist = self.params_list
        if len(values) != len(plist):
            raise ValueError(f"Expected {len(plist)} arrays, got {len(values)}")
        for params, v in zip(plist, values):
            params.assign(v)

    def copy(self) -> "LayerParameters":
        return copy.deepcopy(self)

    def zeros_copy(self) -> "LayerParameters":
        """
        A structurally identical copy filled with zeros.

        Used as the accumulator of the forward contributions of the relevance
        propagation.
        """
        out = copy.deepcopy(self)
        for params in out.params_list:
            params.values.fill(0.0)
        return out

    def __repr__(self) -> str:
        return f"{type(self).__name__}(input_sizes={self.input_sizes}, output_size={self.output_size})"
