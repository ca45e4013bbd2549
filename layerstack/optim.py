# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Update methods.

An update method applies the gradients summed in a `ParamsErrorsCollector`
to their `ParamsArray`s, in place. The per-parameter state (AdaGrad
accumulators, ADAM moments) is held weakly per parameter object, so it goes
away with the parameter.
"""

import logging
import weakref
from abc import ABC, abstractmethod
from typing import Dict

import numpy as np

from .parameters import ParamsArray, ParamsErrorsCollector

logger = logging.getLogger(__name__)


class UpdateMethod(ABC):
    """
    Args:
        learning_rate: The step size.
        weight_decay: L2 penalty coefficient added to the gradient of the
            weight matrices (vectors are not decayed).
    """

    def __init__(self, learning_rate: float, weight_decay: float = 0.0) -> None:
        if learning_rate <= 0.0:
            raise ValueError(f"The learning rate must be positive, got {learning_rate}.")
        if weight_decay < 0.0:
            raise ValueError(f"The weight decay must be non-negative, got {weight_decay}.")
        self.learning_rate = learning_rate
        self.weight_decay = weight_decay

    def update(self, collector: ParamsErrorsCollector, clear: bool = True) -> None:
        """
        Apply all the gradients of `collector`.

        Args:
            clear: Whether to empty the collector afterwards.
        """
        self._new_step()
        all_errors = collector.get_all()
        for errors in all_errors:
            g = errors.values
            if self.weight_decay != 0.0 and errors.params.values.ndim > 1:
                g = g + self.weight_decay * errors.params.values
            self._update_params(errors.params, g)
        logger.debug("%s: updated %d parameters", type(self).__name__, len(all_errors))
        if clear:
            collector.clear()

    def _new_step(self) -> None:
        pass

    @abstractmethod
    def _update_params(self, params: ParamsArray, g: np.ndarray) -> None:
        ...


class LearningRateMethod(UpdateMethod):
    """Plain gradient descent."""

    def _update_params(self, params, g):
        params.values -= self.learning_rate * g


class AdaGradMethod(UpdateMethod):
    def __init__(self, learning_rate: float = 0.01, epsilon: float = 1e-8, weight_decay: float = 0.0) -> None:
        super().__init__(learning_rate, weight_decay)
        self.epsilon = epsilon
        self.state: "weakref.WeakKeyDictionary[ParamsArray, np.ndarray]" = weakref.WeakKeyDictionary()

    def _update_params(self, params, g):
        acc = self.state.get(params)
        if acc is None:
            acc = self.state[params] = np.zeros_like(params.values)
        acc += g * g
        params.values -= self.learning_rate * g / (np.sqrt(acc) + self.epsilon)


class ADAMMethod(UpdateMethod):
    """
    ADAM with bias-corrected moments:

        m = beta1 * m + (1 - beta1) * g
        v = beta2 * v + (1 - beta2) * g^2
        w -= lr * m_hat / (sqrt(v_hat) + eps)
    """

    def __init__(
        self,
        learning_rate: float = 0.001,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-8,
        weight_decay: float = 0.0,
    ) -> None:
        super().__init__(learning_rate, weight_decay)
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self.t = 0
        self.state: "weakref.WeakKeyDictionary[ParamsArray, Dict[str, np.ndarray]]" = weakref.WeakKeyDictionary()

    def _new_step(self) -> None:
        self.t += 1

    def _get_state(self, params: ParamsArray) -> Dict[str, np.ndarray]:
        if params not in self.state:
            self.state[params] = {
                "m": np.zeros_like(params.values),
                "v": np.zeros_like(params.values),
            }
        return self.state[params]

    def _update_params(self, params, g):
        st = self._get_state(params)
        m, v = st["m"], st["v"]
        m *= self.beta1
        m += (1.0 - self.beta1) * g
        v *= self.beta2
        v += (1.0 - self.beta2) * (g * g)

        m_hat = m / (1.0 - self.beta1 ** self.t)
        v_hat = v / (1.0 - self.beta2 ** self.t)
        params.values -= self.learning_rate * m_hat / (np.sqrt(v_hat) + self.epsilon)
