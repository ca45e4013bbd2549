# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Parameter initializers.

An initializer fills a parameter array in place. Weight matrices are laid out
as (fan_out, fan_in); vectors use their length for both fans.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple, Union

import numpy as np

from .utils import default_rng


def _fans(shape: Tuple[int, ...]) -> Tuple[int, int]:
    if len(shape) == 1:
        return shape[0], shape[0]
    fan_out = shape[0]
    fan_in = int(np.prod(shape[1:]))
    return fan_in, fan_out


class Initializer(ABC):
    """Base class: subclasses implement `initialize(values)` in place."""

    @abstractmethod
    def initialize(self, values: np.ndarray) -> None:
        ...


class GlorotInitializer(Initializer):
    """
    Glorot/Xavier uniform initialization:
        U(-gain * sqrt(6 / (fan_in + fan_out)), +gain * sqrt(...))
    """

    def __init__(self, gain: float = 1.0, seed: Optional[int] = None) -> None:
        self.gain = gain
        self.rng = default_rng(seed)

    def initialize(self, values: np.ndarray) -> None:
        fan_in, fan_out = _fans(values.shape)
        limit = self.gain * np.sqrt(6.0 / (fan_in + fan_out))
        values[...] = self.rng.uniform(-limit, limit, size=values.shape)


class HeInitializer(Initializer):
    """Kaiming/He initialization: N(0, sqrt(2/fan_in))."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self.rng = default_rng(seed)

    def initialize(self, values: np.ndarray) -> None:
        fan_in, _ = _fans(values.shape)
        std = np.sqrt(2.0 / fan_in)
        values[...] = self.rng.normal(0.0, std, size=values.shape)


class RandomInitializer(Initializer):
    """Uniform values in [low, high)."""

    def __init__(
        self, low: float = -0.1, high: float = 0.1, seed: Optional[int] = None
    ) -> None:
        if low >= high:
            raise ValueError("RandomInitializer requires low < high.")
        self.low = low
        self.high = high
        self.rng = default_rng(seed)

    def initialize(self, values: np.ndarray) -> None:
        values[...] = self.rng.uniform(self.low, self.high, size=values.shape)


class ConstantInitializer(Initializer):
    def __init__(self, value: float) -> None:
        self.value = value

    def initialize(self, values: np.ndarray) -> None:
        values.fill(self.value)


INITIALIZERS: Dict[str, type] = {
    "glorot": GlorotInitializer,
    "he": HeInitializer,
    "random": RandomInitializer,
}


def get_initializer(
    initializer: Optional[Union[str, Initializer]], seed: Optional[int] = None
) -> Optional[Initializer]:
    """
    Resolve an initializer given by name (or already built).

    None (or "zeros") means the parameters are left at zero.

    Raises:
        KeyError: If the name is not recognized.
    """
    if initializer is None or isinstance(initializer, Initializer):
        return initializer
    if initializer == "zeros":
        return None
    if initializer not in INITIALIZERS:
        raise KeyError(
            f"Unknown initializer: {initializer}. Available: {list(INITIALIZERS.keys())}"
        )
    return INITIALIZERS[initializer](seed=seed)
