# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Base of the recurrent layers.

A recurrent layer reads the output of the same-position layer at the previous
time step through its `LayersWindow`. Backpropagation through time is
pull-based: during its own backward, the layer at step t adds to its output
errors the gradient flowing back from the layer at step t+1, which has
already run its backward and holds its gate errors. The parameters are
shared, so the pull uses `self.params`.
"""

from abc import abstractmethod
from typing import Optional

import numpy as np

from ...activations import activation_deriv
from ...arrays import AugmentedArray, outer
from ...errors import ConfigurationError, UsageOrderError
from ...layer import Layer
from ...parameters import LinearParams, RecurrentLinearParams
from ...utils import as_vector
from ...windows import LayersWindow


def gate_deriv(array: AugmentedArray) -> np.ndarray:
    """The derivative of the activation of a gate at its pre-activation values."""
    return activation_deriv(array.activation, array.values_not_activated)


def unit_errors(unit: LinearParams, g: np.ndarray, x, y_prev: Optional[np.ndarray]):
    """
    (ParamsArray, gradient) pairs of a linear unit given the errors `g` of its
    pre-activation. Without a previous state the recurrent gradient is zero.
    """
    pairs = [(unit.w, outer(x, g)), (unit.b, g)]
    if isinstance(unit, RecurrentLinearParams):
        wr_errors = np.outer(g, y_prev) if y_prev is not None else np.zeros(unit.wr.shape)
        pairs.append((unit.wr, wr_errors))
    return pairs


class RecurrentLayer(Layer):
    """
    A layer with a recurrent dependency on the previous time step.

    Args:
        layers_window: Gives access to the previous and next states. Required.

    Raises:
        ConfigurationError: If `layers_window` is None.
    """

    def __init__(
        self,
        input_array,
        output_array,
        params,
        layers_window: LayersWindow,
        activation=None,
        dropout=0.0,
        rng=None,
    ) -> None:
        if layers_window is None:
            raise ConfigurationError(f"{type(self).__name__} requires a layers window.")
        super().__init__(input_array, output_array, params, activation, dropout, rng)
        self.layers_window = layers_window

    def prev_state(self) -> Optional[Layer]:
        return self.layers_window.get_prev_state()

    def next_state(self) -> Optional[Layer]:
        return self.layers_window.get_next_state()

    def prev_output(self) -> Optional[np.ndarray]:
        prev = self.prev_state()
        return None if prev is None else prev.output_array.values

    def set_init_hidden(self, array: np.ndarray) -> None:
        """Use this layer as the initial hidden state, with `array` as its output."""
        self.output_array.assign_values(as_vector(array))

    def get_init_hidden_errors(self) -> np.ndarray:
        """
        The errors of the initial hidden array set with `set_init_hidden`,
        pulled from the layer of the first time step.
        """
        next_layer = self.next_state()
        if next_layer is None:
            raise UsageOrderError("The initial hidden layer has no next state.")
        return self._recurrent_errors(next_layer)

    def _add_recurrent_errors(self) -> Optional[Layer]:
        """Add to the output errors the ones pulled from the next state (if any) and return it."""
        next_layer = self.next_state()
        if next_layer is not None:
            self.output_array.add_errors(self._recurrent_errors(next_layer))
        return next_layer

    @abstractmethod
    def _recurrent_errors(self, next_layer: "RecurrentLayer") -> np.ndarray:
        """The errors of this output due to its use in `next_layer`."""
