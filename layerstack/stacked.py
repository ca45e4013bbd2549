# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Stacks of layers.

`StackedLayersParameters` holds the parameters of each layer position.
`StackedLayers` instantiates one layer per position, the output array of a
layer being the input array of the next one (the same object).
`RecurrentStackedLayers` is the stack of one time step of a sequence: its
recurrent layers reach the adjacent steps through a `StatesWindow`.
"""

import json
import logging
import os
import weakref
from typing import BinaryIO, List, Optional, Sequence, Union

import numpy as np

from .arrays import AugmentedArray
from .errors import ConfigurationError, InitHiddenNotSetError, UsageOrderError
from .factory import build_input_array, build_layer, layer_parameters_factory
from .initializers import Initializer, get_initializer
from .layer import Layer
from .layer_interface import LayerInterface
from .layer_types import ConnectionType, InputType
from .parameters import LayerParameters, ParamsArray, ParamsErrorsCollector, ParamsErrorsList
from .utils import default_rng
from .windows import EmptyStatesWindow, LayersWindow, StatesWindow

logger = logging.getLogger(__name__)


class StackedLayersParameters:
    """
    The parameters of a stack of layers.

    Args:
        layers_configuration: N + 1 LayerInterface entries for N layers. The
            first describes the input and has no connection type.
        weights_initializer: Initializer (or name) of the weights; None for zeros.
        biases_initializer: Initializer (or name) of the biases; None for zeros.
        seed: Seed of the named initializers.

    Raises:
        ConfigurationError: If the configuration is not a valid chain.
    """

    def __init__(
        self,
        layers_configuration: Sequence[LayerInterface],
        weights_initializer: Optional[Union[str, Initializer]] = "glorot",
        biases_initializer: Optional[Union[str, Initializer]] = "glorot",
        seed: Optional[int] = None,
    ) -> None:
        config = list(layers_configuration)
        self._check_configuration(config)
        self.layers_configuration: List[LayerInterface] = config

        weights_init = get_initializer(weights_initializer, seed)
        biases_init = get_initializer(biases_initializer, None if seed is None else seed + 1)

        self.params_per_layer: List[LayerParameters] = [
            layer_parameters_factory(
                config[i].sizes,
                config[i + 1].size,
                config[i + 1].connection_type,
                weights_init,
                biases_init,
                **config[i + 1].options,
            )
            for i in range(len(config) - 1)
        ]
        logger.debug(
            "StackedLayersParameters: %s",
            " -> ".join(str(c.sizes if c.connection_type is None else c.connection_type.value) for c in config),
        )

    @staticmethod
    def _check_configuration(config: List[LayerInterface]) -> None:
        if len(config) < 2:
            raise ConfigurationError("A stack requires an input configuration and at least one layer.")
        if config[0].connection_type is not None:
            raise ConfigurationError("The first configuration describes the input and has no connection type.")
        for i, layer_config in enumerate(config[1:]):
            ct = layer_config.connection_type
            if ct is None:
                raise ConfigurationError(f"Missing connection type for layer {i}.")
            if ct is ConnectionType.BATCH_NORM:
                raise ConfigurationError("BatchNorm has one output per input and cannot be stacked.")
            if ct.is_merge and i > 0:
                raise ConfigurationError(f"Only the first layer can be a merge layer, not layer {i}.")
            if not ct.is_merge and len(config[i].sizes) > 1:
                raise ConfigurationError(f"{ct.value} accepts a single input.")

    @property
    def num_of_layers(self) -> int:
        return len(self.params_per_layer)

    @property
    def input_type(self) -> InputType:
        return self.layers_configuration[0].type

    @property
    def input_size(self) -> int:
        return self.layers_configuration[0].size

    @property
    def inputs_size(self) -> List[int]:
        return list(self.layers_configuration[0].sizes)

    @property
    def output_size(self) -> int:
        return self.layers_configuration[-1].size

    def get_layer_params(self, index: int) -> LayerParameters:
        """
        Raises:
            ConfigurationError: If the index is out of range.
        """
        if not 0 <= index < self.num_of_layers:
            raise ConfigurationError(f"Layer index ({index}) out of range ([0, {self.num_of_layers - 1}]).")
        return self.params_per_layer[index]

    @property
    def params_list(self) -> List[ParamsArray]:
        return [p for layer_params in self.params_per_layer for p in layer_params.params_list]

    def dump(self, stream: Union[BinaryIO, str, os.PathLike]) -> None:
        """
        Save to an `.npz` archive: the layers configuration as JSON under
        `config`, the tensors of layer i under `l{i}_p{j}` in `params_list` order.
        """
        config = json.dumps([c.to_dict() for c in self.layers_configuration])
        np.savez(
            stream,
            config=np.array(config),
            **{
                f"l{i}_p{j}": p.values
                for i, layer_params in enumerate(self.params_per_layer)
                for j, p in enumerate(layer_params.params_list)
            },
        )

    @classmethod
    def load(cls, stream: Union[BinaryIO, str, os.PathLike]) -> "StackedLayersParameters":
        """
        Rebuild parameters saved with `dump`.

        Raises:
            ConfigurationError: If the archive has no configuration or its
                tensors do not match it.
        """
        with np.load(stream) as z:
            if "config" not in z.files:
                raise ConfigurationError("Not a layer stack archive: missing the configuration.")
            config = [LayerInterface.from_dict(d) for d in json.loads(str(z["config"]))]
            params = cls(config, weights_initializer=None, biases_initializer=None)
            for i, layer_params in enumerate(params.params_per_layer):
                keys = [f"l{i}_p{j}" for j in range(len(layer_params.params_list))]
                missing = [k for k in keys if k not in z.files]
                if missing:
                    raise ConfigurationError(f"Missing tensors {missing} for layer {i}.")
                try:
                    layer_params.set_params([z[k] for k in keys])
                except ValueError as exc:
                    raise ConfigurationError(f"Layer {i}: {exc}") from exc
        logger.debug("Loaded %r", params)
        return params

    def __repr__(self) -> str:
        return f"StackedLayersParameters(layers={self.num_of_layers}, input={self.inputs_size}, output={self.output_size})"


class StackedLayers:
    """
    One instance of a stack of layers.

    Args:
        params: The shared parameters.
        dropout: The dropout of every layer, or one per layer.
        seed: Seed (or Generator) of the dropout masks.

    Raises:
        ConfigurationError: On a recurrent layer (they require a
            `RecurrentStackedLayers`) or an invalid dropout.
    """

    def __init__(
        self,
        params: StackedLayersParameters,
        dropout: Union[float, Sequence[float]] = 0.0,
        seed=None,
    ) -> None:
        self.params = params
        n = params.num_of_layers
        if isinstance(dropout, (int, float)):
            self.dropouts = [float(dropout)] * n
        else:
            self.dropouts = [float(d) for d in dropout]
            if len(self.dropouts) != n:
                raise ConfigurationError(f"Expected {n} dropout values, got {len(self.dropouts)}.")
        self.rng = default_rng(seed)
        self.layers: List[Layer] = self._build_layers()

    def _layers_window(self, index: int) -> Optional[LayersWindow]:
        return None

    def _input_type(self, index: int) -> InputType:
        return self.params.input_type if index == 0 else InputType.DENSE

    def _build_layers(self) -> List[Layer]:
        config = self.params.layers_configuration
        input_arrays: List[AugmentedArray] = [
            build_input_array(self.params.input_type, size) for size in config[0].sizes
        ]
        layers = []
        for i, layer_params in enumerate(self.params.params_per_layer):
            layer = build_layer(
                input_arrays,
                config[i + 1],
                layer_params,
                dropout=self.dropouts[i],
                layers_window=self._layers_window(i),
                rng=self.rng,
            )
            layers.append(layer)
            input_arrays = [layer.output_array]
        return layers

    @property
    def input_layer(self) -> Layer:
        return self.layers[0]

    @property
    def output_layer(self) -> Layer:
        return self.layers[-1]

    def forward(self, x) -> np.ndarray:
        """
        Forward an input (a list of inputs for a merge input layer).

        Returns:
            The output values of the last layer.
        """
        if len(self.input_layer.input_arrays) > 1:
            self.input_layer.set_inputs(x)
        else:
            self.input_layer.set_input(x)

        for layer in self.layers:
            layer.forward()

        return self.output_layer.output_array.values

    def backward(
        self,
        output_errors: np.ndarray,
        propagate_to_input: bool = False,
        collector: Optional[ParamsErrorsCollector] = None,
    ) -> ParamsErrorsList:
        """
        Backward from the errors of the output of the last layer.

        Returns:
            The parameter errors of all the layers.
        """
        self.output_layer.set_errors(output_errors)

        errors_list = ParamsErrorsList()
        for i in reversed(range(len(self.layers))):
            errors_list.extend(
                self.layers[i].backward(propagate_to_input=(i > 0 or propagate_to_input), collector=collector)
            )
        return errors_list

    def get_input_errors(self) -> Union[np.ndarray, List[np.ndarray]]:
        arrays = self.input_layer.input_arrays
        if len(arrays) > 1:
            return [a.errors for a in arrays]
        return arrays[0].errors

    def __repr__(self) -> str:
        return f"{type(self).__name__}({[type(layer).__name__ for layer in self.layers]})"


class _StackLayersWindow(LayersWindow):
    """The window of the layer at `index` of a recurrent stack."""

    def __init__(self, stack: "RecurrentStackedLayers", index: int) -> None:
        self._stack = weakref.ref(stack)
        self.index = index

    def stack(self) -> "RecurrentStackedLayers":
        stack = self._stack()
        if stack is None:
            raise UsageOrderError("The stack of this window has been discarded.")
        return stack

    def get_prev_state(self) -> Optional[Layer]:
        stack = self.stack()
        if stack.use_init_hidden[self.index]:
            return stack.init_hidden_layers[self.index]
        prev_stack = stack.states_window.get_prev_state()
        return None if prev_stack is None else prev_stack.layers[self.index]

    def get_next_state(self) -> Optional[Layer]:
        next_stack = self.stack().states_window.get_next_state()
        return None if next_stack is None else next_stack.layers[self.index]


class _InitHiddenLayersWindow(_StackLayersWindow):
    """The window of an initial hidden layer: its next state is the layer it precedes."""

    def get_prev_state(self) -> None:
        return None

    def get_next_state(self) -> Layer:
        return self.stack().layers[self.index]


class RecurrentStackedLayers(StackedLayers):
    """
    The stack of one time step of a sequence.

    Args:
        params: The parameters shared by all the time steps.
        dropout: The dropout of every layer, or one per layer.
        states_window: Access to the stacks of the previous and next steps.
            None for a sequence of a single step.
        seed: Seed (or Generator) of the dropout masks.
    """

    def __init__(
        self,
        params: StackedLayersParameters,
        dropout: Union[float, Sequence[float]] = 0.0,
        states_window: Optional[StatesWindow] = None,
        seed=None,
    ) -> None:
        self.states_window = states_window if states_window is not None else EmptyStatesWindow()
        n = params.num_of_layers
        self.use_init_hidden: List[bool] = [False] * n
        self.init_hidden_layers: List[Optional[Layer]] = [None] * n
        self._windows: List[Optional[LayersWindow]] = [None] * n
        super().__init__(params, dropout, seed)

    def _is_recurrent(self, index: int) -> bool:
        return self.params.layers_configuration[index + 1].connection_type.is_recurrent

    def _layers_window(self, index: int) -> Optional[LayersWindow]:
        if not self._is_recurrent(index):
            return None
        window = _StackLayersWindow(self, index)
        self._windows[index] = window
        return window

    def get_prev_state(self, index: int) -> Optional[Layer]:
        """The layer at `index` in the previous state (or the initial hidden layer)."""
        return self._window(index).get_prev_state()

    def get_next_state(self, index: int) -> Optional[Layer]:
        return self._window(index).get_next_state()

    def _window(self, index: int) -> LayersWindow:
        window = self._windows[index]
        if window is None:
            raise ConfigurationError(f"Layer {index} is not recurrent.")
        return window

    def set_init_hidden(self, arrays: Sequence[Optional[np.ndarray]]) -> None:
        """
        Set the initial hidden arrays, one per layer (None where not used).

        Must be called before the forward of the layers it affects.

        Raises:
            ConfigurationError: If the number of arrays differs from the number
                of layers, or an array is given for a non-recurrent layer.
        """
        n = len(self.layers)
        if len(arrays) != n:
            raise ConfigurationError(f"Expected {n} initial hidden arrays (one per layer), got {len(arrays)}.")

        for i, array in enumerate(arrays):
            if array is None:
                self.use_init_hidden[i] = False
                continue
            if not self._is_recurrent(i):
                raise ConfigurationError(f"Layer {i} is not recurrent and cannot have an initial hidden array.")
            if self.init_hidden_layers[i] is None:
                self.init_hidden_layers[i] = self._build_init_hidden_layer(i)
            self.init_hidden_layers[i].set_init_hidden(array)
            self.use_init_hidden[i] = True

    def _build_init_hidden_layer(self, index: int) -> Layer:
        config = self.params.layers_configuration
        input_arrays = [build_input_array(self._input_type(index), size) for size in config[index].sizes]
        return build_layer(
            input_arrays,
            config[index + 1],
            self.params.params_per_layer[index],
            layers_window=_InitHiddenLayersWindow(self, index),
            rng=self.rng,
        )

    def get_init_hidden_errors(self) -> List[Optional[np.ndarray]]:
        """The errors of the initial hidden arrays (None where not set)."""
        return [
            self.init_hidden_layers[i].get_init_hidden_errors() if used else None
            for i, used in enumerate(self.use_init_hidden)
        ]

    def get_init_hidden_errors_at(self, index: int) -> np.ndarray:
        """
        Raises:
            InitHiddenNotSetError: If no initial hidden array is set at `index`.
        """
        if not self.use_init_hidden[index]:
            raise InitHiddenNotSetError(f"No initial hidden array set for layer {index}.")
        return self.init_hidden_layers[index].get_init_hidden_errors()
