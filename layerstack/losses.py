# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Loss calculators.

`calculate_errors(output, gold)` returns the errors to assign to the output
array of the last layer (the gradient of the loss with respect to the
activated output). The output activation derivative is then applied by the
layer backward.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np


class LossCalculator(ABC):
    @abstractmethod
    def calculate_loss(self, output: np.ndarray, gold: np.ndarray) -> float:
        ...

    @abstractmethod
    def calculate_errors(self, output: np.ndarray, gold: np.ndarray) -> np.ndarray:
        ...

    def calculate_errors_sequence(
        self, outputs: Sequence[np.ndarray], golds: Sequence[Optional[np.ndarray]]
    ) -> List[Optional[np.ndarray]]:
        """Errors of each step of a sequence; a None gold gives None errors."""
        if len(outputs) != len(golds):
            raise ValueError(f"Expected {len(outputs)} gold arrays, got {len(golds)}.")
        return [None if g is None else self.calculate_errors(o, g) for o, g in zip(outputs, golds)]


class MSECalculator(LossCalculator):
    """Mean squared error: loss = 1/2 * sum((output - gold)^2)."""

    def calculate_loss(self, output, gold):
        errors = self.calculate_errors(output, gold)
        return 0.5 * float(errors @ errors)

    def calculate_errors(self, output, gold):
        output = np.asarray(output, dtype=np.float64)
        gold = np.asarray(gold, dtype=np.float64)
        if output.shape != gold.shape:
            raise ValueError(f"Output shape {output.shape} != gold shape {gold.shape}")
        return output - gold


class SoftmaxCrossEntropyCalculator(LossCalculator):
    """
    Cross-entropy of a probability distribution (the output of a softmax):
        loss = -sum(gold * log(output))

    The errors are `-gold / output`; through the softmax Jacobian they become
    the usual `output - gold` on the pre-activation.

    Raises:
        ValueError: If an output probability is not positive where the gold
            probability is, instead of producing -inf or NaN.
    """

    def _check(self, output: np.ndarray, gold: np.ndarray) -> None:
        if output.shape != gold.shape:
            raise ValueError(f"Output shape {output.shape} != gold shape {gold.shape}")
        if np.any((output <= 0.0) & (gold > 0.0)):
            raise ValueError("Cannot compute the cross-entropy of a zero probability.")

    def calculate_loss(self, output, gold):
        output = np.asarray(output, dtype=np.float64)
        gold = np.asarray(gold, dtype=np.float64)
        self._check(output, gold)
        active = gold > 0.0
        return float(-(gold[active] * np.log(output[active])).sum())

    def calculate_errors(self, output, gold):
        output = np.asarray(output, dtype=np.float64)
        gold = np.asarray(gold, dtype=np.float64)
        self._check(output, gold)
        errors = np.zeros_like(output)
        active = gold > 0.0
        errors[active] = -gold[active] / output[active]
        return errors
