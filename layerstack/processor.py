# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Forward and backward of whole sequences through a recurrent stack.

One `RecurrentStackedLayers` is built per time step, all sharing the same
`StackedLayersParameters`. The steps of a sequence are kept in a
`StatesSequence`; each step reaches its neighbours through an
`IndexedStatesWindow`. The backward runs from the last step to the first so
that each recurrent layer can pull the errors of its successor.
"""

import logging
from typing import List, Optional, Sequence, Union

import numpy as np

from .errors import UsageOrderError
from .parameters import ParamsErrorsCollector
from .stacked import RecurrentStackedLayers, StackedLayersParameters
from .utils import default_rng
from .windows import IndexedStatesWindow, StatesSequence

logger = logging.getLogger(__name__)


class RecurrentSequenceProcessor:
    """
    Args:
        params: The parameters shared by all the time steps.
        dropout: The dropout of every layer, or one per layer.
        seed: Seed (or Generator) of the dropout masks.
    """

    def __init__(
        self,
        params: StackedLayersParameters,
        dropout: Union[float, Sequence[float]] = 0.0,
        seed=None,
    ) -> None:
        self.params = params
        self.dropout = dropout
        self.rng = default_rng(seed)
        self._check_dropout()
        self.sequence: StatesSequence = StatesSequence()
        self._propagate_to_input = False

    def __len__(self) -> int:
        return len(self.sequence)

    def _check_dropout(self) -> None:
        n = self.params.num_of_layers
        dropouts = [self.dropout] * n if isinstance(self.dropout, (int, float)) else list(self.dropout)
        config = self.params.layers_configuration
        for i in range(1, min(n, len(dropouts))):
            if dropouts[i] > 0.0 and config[i].connection_type.is_recurrent:
                logger.warning(
                    "Dropout on layer %d masks the output of recurrent layer %d, which is also its "
                    "recurrent input: the recurrent gradients ignore the mask.",
                    i,
                    i - 1,
                )

    def forward(
        self,
        inputs: Sequence,
        init_hidden: Optional[Sequence[Optional[np.ndarray]]] = None,
    ) -> List[np.ndarray]:
        """
        Forward a sequence.

        Args:
            inputs: One input per time step (a list of inputs per step for a
                merge input layer).
            init_hidden: Initial hidden arrays of the first step, one per
                layer (None where not used).

        Returns:
            The output of each time step.
        """
        self.sequence = StatesSequence()
        outputs = []
        for t, x in enumerate(inputs):
            stack = RecurrentStackedLayers(
                self.params,
                dropout=self.dropout,
                states_window=IndexedStatesWindow(self.sequence, t),
                seed=self.rng,
            )
            self.sequence.append(stack)
            if t == 0 and init_hidden is not None:
                stack.set_init_hidden(init_hidden)
            outputs.append(stack.forward(x).copy())

        logger.debug("Forwarded a sequence of %d steps", len(self.sequence))
        return outputs

    def backward(
        self,
        output_errors: Sequence[Optional[np.ndarray]],
        propagate_to_input: bool = False,
        collector: Optional[ParamsErrorsCollector] = None,
    ) -> ParamsErrorsCollector:
        """
        Backpropagation through time.

        Args:
            output_errors: The errors of the output of each step. A None entry
                means the step output does not contribute to the loss.
            propagate_to_input: Whether to compute the errors of the inputs.
            collector: Where to sum the gradients (a new one if None).

        Returns:
            The collector holding the parameter gradients summed over the steps.

        Raises:
            UsageOrderError: If no sequence has been forwarded.
            ValueError: If the number of errors differs from the number of steps.
        """
        if not self.sequence:
            raise UsageOrderError("backward() called before forward().")
        if len(output_errors) != len(self.sequence):
            raise ValueError(f"Expected {len(self.sequence)} output errors, got {len(output_errors)}.")

        if collector is None:
            collector = ParamsErrorsCollector()

        for t in reversed(range(len(self.sequence))):
            errors = output_errors[t]
            if errors is None:
                errors = np.zeros(self.params.output_size)
            self.sequence[t].backward(errors, propagate_to_input=propagate_to_input, collector=collector)

        self._propagate_to_input = propagate_to_input
        logger.debug("Backward of %d steps: %d parameter gradients", len(self.sequence), len(collector))
        return collector

    def get_inputs_errors(self) -> List:
        """The errors of the input of each step."""
        if not self._propagate_to_input:
            raise UsageOrderError("Input errors are available after a backward with propagate_to_input=True.")
        return [stack.get_input_errors() for stack in self.sequence]

    def get_init_hidden_errors(self) -> List[Optional[np.ndarray]]:
        """The errors of the initial hidden arrays given to forward (None where not set)."""
        if not self.sequence:
            raise UsageOrderError("No sequence has been forwarded.")
        return self.sequence[0].get_init_hidden_errors()
