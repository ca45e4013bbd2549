# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
layerstack
==========

Stackable neural-network layers in pure NumPy with hand-written forward and
backward passes: feedforward, merge and recurrent variants, stacks of them,
and backpropagation through time over sequences.

Public API
~~~~~~~~~~
- Configuration
    - `LayerInterface`, `load_layers_configuration`
    - `ConnectionType`, `InputType`
- Parameters
    - `StackedLayersParameters`, `LayerParameters`
    - `ParamsArray`, `ParamsErrors`, `ParamsErrorsCollector`
- Layers
    - `layer_factory`, `layer_parameters_factory`, `Layer`
    - `StackedLayers`, `RecurrentStackedLayers`
    - `RecurrentSequenceProcessor`
- Arrays
    - `AugmentedArray`, `SparseArray`, `SparseBinaryArray`
- Training
    - `MSECalculator`, `SoftmaxCrossEntropyCalculator`
    - `LearningRateMethod`, `AdaGradMethod`, `ADAMMethod`

Everything else lives in sub-modules and is **not** considered part of the
stable interface.

Example
-------
>>> import numpy as np, layerstack as ls
>>> config = [ls.LayerInterface(size=4),
...           ls.LayerInterface(size=3, connection_type="GRU", activation="tanh")]
>>> params = ls.StackedLayersParameters(config, seed=0)
>>> processor = ls.RecurrentSequenceProcessor(params)
>>> outputs = processor.forward([np.ones(4), np.zeros(4)])
>>> len(outputs), outputs[0].shape
(2, (3,))
"""

from importlib.metadata import version as _pkg_version

from .activations import ACTIVATIONS, Activation, get_activation
from .arrays import AugmentedArray, SparseArray, SparseBinaryArray
from .errors import (
    CapabilityError,
    ConfigurationError,
    InitHiddenNotSetError,
    LayerStackError,
    RelevanceNotSupportedError,
    UsageOrderError,
)
from .factory import layer_factory, layer_parameters_factory
from .initializers import (
    ConstantInitializer,
    GlorotInitializer,
    HeInitializer,
    RandomInitializer,
)
from .layer import Layer
from .layer_interface import LayerInterface, load_layers_configuration
from .layer_types import ConnectionType, InputType
from .losses import MSECalculator, SoftmaxCrossEntropyCalculator
from .optim import ADAMMethod, AdaGradMethod, LearningRateMethod
from .parameters import (
    LayerParameters,
    ParamsArray,
    ParamsErrors,
    ParamsErrorsCollector,
    ParamsErrorsList,
)
from .processor import RecurrentSequenceProcessor
from .stacked import RecurrentStackedLayers, StackedLayers, StackedLayersParameters
from .windows import (
    EmptyStatesWindow,
    FixedLayersWindow,
    IndexedStatesWindow,
    LayersWindow,
    StatesSequence,
    StatesWindow,
)

__all__ = [
    "ACTIVATIONS",
    "Activation",
    "get_activation",
    "AugmentedArray",
    "SparseArray",
    "SparseBinaryArray",
    "LayerStackError",
    "ConfigurationError",
    "CapabilityError",
    "RelevanceNotSupportedError",
    "InitHiddenNotSetError",
    "UsageOrderError",
    "layer_factory",
    "layer_parameters_factory",
    "GlorotInitializer",
    "HeInitializer",
    "RandomInitializer",
    "ConstantInitializer",
    "Layer",
    "LayerInterface",
    "load_layers_configuration",
    "ConnectionType",
    "InputType",
    "MSECalculator",
    "SoftmaxCrossEntropyCalculator",
    "LearningRateMethod",
    "AdaGradMethod",
    "ADAMMethod",
    "LayerParameters",
    "ParamsArray",
    "ParamsErrors",
    "ParamsErrorsCollector",
    "ParamsErrorsList",
    "RecurrentSequenceProcessor",
    "StackedLayers",
    "RecurrentStackedLayers",
    "StackedLayersParameters",
    "LayersWindow",
    "StatesWindow",
    "EmptyStatesWindow",
    "FixedLayersWindow",
    "IndexedStatesWindow",
    "StatesSequence",
]

# ---------------------------------------------------------------------
# Version string
# ---------------------------------------------------------------------
try:  # installed via pip / build backend
    __version__ = _pkg_version(__name__)
except Exception:  # running from a checkout
    __version__ = "0.0.0.dev0"

import logging as _logging

_logging.getLogger(__name__).addHandler(_logging.NullHandler())
