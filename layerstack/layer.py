# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
The generic layer lifecycle.

`Layer` implements what every variant shares: input/output bookkeeping,
inverted dropout with exact restoration, the usage-order checks, and the
relevance dispatch. Variants implement `_forward` and `_backward` only (and,
when they support it, the `SupportsRelevance` hooks).
"""

import logging
from abc import ABC, abstractmethod
from typing import ClassVar, List, Optional, Sequence, Union

import numpy as np

from .activations import Activation, get_activation
from .arrays import AugmentedArray, apply_mask, copy_values, restore_values
from .errors import (
    CapabilityError,
    ConfigurationError,
    RelevanceNotSupportedError,
    UsageOrderError,
)
from .layer_types import ConnectionType, InputType
from .parameters import LayerParameters, ParamsArray, ParamsErrors, ParamsErrorsCollector, ParamsErrorsList
from .utils import default_rng, dropout_mask, signed_stabilizer

logger = logging.getLogger(__name__)


class Layer(ABC):
    """
    A parametrized function from one (or more) input arrays to a dense output.

    Args:
        input_arrays: The input AugmentedArray, or a list of them for merge
            layers. Arrays are used by reference so that stacked layers share
            them.
        output_array: The dense output AugmentedArray.
        params: The layer parameters (shared, not owned).
        activation: Optional activation (name or Activation).
        dropout: Probability in [0, 1) of dropping each input unit.
        rng: Seed or Generator used to draw the dropout masks.

    Raises:
        ConfigurationError: On size mismatches with `params`, an invalid
            dropout, or dropout on a sparse-binary input.
    """

    connection_type: ClassVar[ConnectionType]

    def __init__(
        self,
        input_arrays: Union[AugmentedArray, Sequence[AugmentedArray]],
        output_array: AugmentedArray,
        params: LayerParameters,
        activation: Optional[Union[str, Activation]] = None,
        dropout: float = 0.0,
        rng=None,
    ) -> None:
        if isinstance(input_arrays, AugmentedArray):
            input_arrays = [input_arrays]
        self.input_arrays: List[AugmentedArray] = list(input_arrays)
        self.output_array = output_array
        self.params = params
        self.activation_function = get_activation(activation)
        self.dropout = float(dropout)
        self.rng = default_rng(rng)

        if not 0.0 <= self.dropout < 1.0:
            raise ConfigurationError(f"Dropout must be in [0, 1), got {self.dropout}.")
        if self.dropout > 0.0 and any(t is InputType.SPARSE_BINARY for t in self.input_types):
            raise ConfigurationError("Dropout cannot be applied to a sparse binary input.")
        self._check_sizes()

        self._dropout_masks: Optional[List[np.ndarray]] = None
        self._masked_values: Optional[list] = None
        self._input_cache: Optional[list] = None
        self._forwarded = False

    def _check_sizes(self) -> None:
        sizes = [a.size for a in self.input_arrays]
        if sizes != self.params.input_sizes:
            raise ConfigurationError(
                f"{type(self).__name__}: input sizes {sizes} do not match the parameters {self.params.input_sizes}."
            )
        if self.output_array.size != self.params.output_size:
            raise ConfigurationError(
                f"{type(self).__name__}: output size {self.output_array.size} "
                f"does not match the parameters {self.params.output_size}."
            )

    # ------------------------------------------------------------------
    # Inputs and outputs
    # ------------------------------------------------------------------

    @property
    def input_array(self) -> AugmentedArray:
        return self.input_arrays[0]

    @property
    def input_types(self) -> List[InputType]:
        return [InputType.of(a.values) for a in self.input_arrays]

    @property
    def input_type(self) -> InputType:
        return self.input_types[0]

    @property
    def dense_input(self) -> bool:
        return all(t is InputType.DENSE for t in self.input_types)

    @property
    def sparse_input(self) -> bool:
        return not self.dense_input

    def set_input(self, values) -> None:
        self.input_array.assign_values(values)

    def set_inputs(self, values_list: Sequence) -> None:
        if len(values_list) != len(self.input_arrays):
            raise ValueError(f"Expected {len(self.input_arrays)} inputs, got {len(values_list)}.")
        for array, values in zip(self.input_arrays, values_list):
            array.assign_values(values)

    def set_errors(self, errors: np.ndarray) -> None:
        self.output_array.assign_errors(errors)

    def set_output_relevance(self, relevance: np.ndarray) -> None:
        self.output_array.assign_relevance(relevance)

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def forward(self, contributions: Optional[LayerParameters] = None) -> None:
        """
        Compute the output from the input and the parameters.

        Args:
            contributions: If given, a `params.zeros_copy()` that receives the
                per-weight contributions needed by the relevance pass.

        Raises:
            RelevanceNotSupportedError: If contributions are requested on a
                variant without relevance propagation.
            CapabilityError: If contributions are requested on a sparse input.
        """
        if contributions is not None:
            self._check_relevance_support()

        if self.dropout > 0.0:
            self._apply_dropout()

        if contributions is None:
            self._forward()
        else:
            self._forward_with_contributions(contributions)

        self._forwarded = True

    def _apply_dropout(self) -> None:
        self._restore_masked_inputs()

        if self._input_cache is None:
            self._input_cache = [copy_values(a.values) for a in self.input_arrays]
        else:
            for cache, array in zip(self._input_cache, self.input_arrays):
                restore_values(cache, array.values)

        self._dropout_masks = []
        for array in self.input_arrays:
            mask = dropout_mask(array.size, self.dropout, self.rng)
            apply_mask(array.values, mask)
            self._dropout_masks.append(mask)
        self._masked_values = [a.values for a in self.input_arrays]

    def _restore_masked_inputs(self) -> None:
        """Restore the inputs masked by the last forward, unless they have been replaced since."""
        if self._dropout_masks is None:
            return
        for array, masked, cache in zip(self.input_arrays, self._masked_values, self._input_cache):
            if array.values is masked:
                restore_values(array.values, cache)
        self._dropout_masks = None
        self._masked_values = None

    @abstractmethod
    def _forward(self) -> None:
        ...

    def _forward_with_contributions(self, contributions: LayerParameters) -> None:
        raise RelevanceNotSupportedError(type(self).__name__)

    # ------------------------------------------------------------------
    # Backward
    # ------------------------------------------------------------------

    def backward(
        self,
        propagate_to_input: bool,
        collector: Optional[ParamsErrorsCollector] = None,
    ) -> ParamsErrorsList:
        """
        Compute the parameter gradients from the errors of the output.

        Args:
            propagate_to_input: Whether to assign the errors of the input.
            collector: If given, the gradients are also summed into it.

        Returns:
            One ParamsErrors per tensor of `params.params_list`.

        Raises:
            UsageOrderError: If called without a matching forward.
        """
        if not self._forwarded:
            raise UsageOrderError(f"{type(self).__name__}.backward() called without a forward.")

        errors_list = self._backward(propagate_to_input)

        if self._dropout_masks is not None:
            if propagate_to_input:
                for array, mask in zip(self.input_arrays, self._dropout_masks):
                    array.assign_errors(array.errors * mask)
            self._restore_masked_inputs()

        self._forwarded = False

        if collector is not None:
            collector.accumulate(errors_list)

        return errors_list

    @abstractmethod
    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        ...

    def _params_errors(self, *pairs) -> ParamsErrorsList:
        """Build the backward result from (ParamsArray, gradient) pairs."""
        return ParamsErrorsList(ParamsErrors(p, g) for p, g in pairs)

    def apply_output_activation_deriv(self) -> None:
        """
        Multiply the output errors by the derivative of the output activation.

        The errors are replaced by the errors of the pre-activation values.
        A Jacobian derivative (softmax) is applied as a matrix product.
        """
        if not self.output_array.has_activation:
            return
        deriv = self.output_array.calculate_activation_deriv()
        errors = self.output_array.errors
        if self.output_array.activation.jacobian:
            self.output_array.assign_errors(deriv.T @ errors)
        else:
            self.output_array.assign_errors(errors * deriv)

    # ------------------------------------------------------------------
    # Relevance
    # ------------------------------------------------------------------

    def _check_relevance_support(self) -> None:
        if not isinstance(self, SupportsRelevance):
            raise RelevanceNotSupportedError(type(self).__name__)
        if not self.dense_input:
            raise CapabilityError("Relevance propagation requires a dense input.")

    def set_input_relevance(self, contributions: LayerParameters) -> None:
        """Assign the relevance of the input, from the output relevance."""
        self._check_relevance_support()
        self.input_array.assign_relevance(self._input_relevance(contributions))

    def add_input_relevance(self, contributions: LayerParameters) -> None:
        """Add the relevance of the input to the one already assigned."""
        self._check_relevance_support()
        self.input_array.add_relevance(self._input_relevance(contributions))

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(inputs={[a.size for a in self.input_arrays]}, "
            f"output={self.output_array.size}, dropout={self.dropout})"
        )


class SupportsRelevance(ABC):
    """
    Optional capability of propagating relevance (epsilon-LRP).

    A variant implementing it records, during `forward(contributions)`, the
    contribution w_ji * x_i + b_j / n of each input unit to each output unit.
    """

    @abstractmethod
    def _forward_with_contributions(self, contributions: LayerParameters) -> None:
        ...

    @abstractmethod
    def _input_relevance(self, contributions: LayerParameters) -> np.ndarray:
        ...


def linear_contributions(w: ParamsArray, b: Optional[ParamsArray], x: np.ndarray, n: int) -> np.ndarray:
    """Matrix of contributions w_ji * x_i + b_j / n."""
    contrib = w.values * x[np.newaxis, :]
    if b is not None:
        contrib += (b.values / n)[:, np.newaxis]
    return contrib


def epsilon_relevance(contrib: np.ndarray, y_in: np.ndarray, out_relevance: np.ndarray) -> np.ndarray:
    """
    Epsilon-LRP: distribute `out_relevance` on the inputs of `contrib`.

    R_i = sum_j contrib_ji / (y_in_j + eps * sign(y_in_j)) * R_j
    """
    ratio = out_relevance / signed_stabilizer(y_in)
    return contrib.T @ ratio
