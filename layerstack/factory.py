# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Construction of layers and of their parameters.

`VARIANTS` maps every connection type to its layer class, its parameters
class and the shape rule checked at construction. The input encoding is
resolved separately, by `build_input_array`.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .arrays import AugmentedArray, SparseArray, SparseBinaryArray
from .errors import ConfigurationError
from .initializers import Initializer, get_initializer
from .layer import Layer
from .layer_interface import LayerInterface
from .layer_types import ConnectionType, InputType
from .models.feedforward import (
    FeedforwardLayer,
    FeedforwardLayerParameters,
    HighwayLayer,
    HighwayLayerParameters,
    NormLayer,
    NormLayerParameters,
    SquaredDistanceLayer,
    SquaredDistanceLayerParameters,
)
from .models.merge import (
    AffineLayer,
    AffineLayerParameters,
    AvgLayer,
    BatchNormLayer,
    BatchNormLayerParameters,
    BiaffineLayer,
    BiaffineLayerParameters,
    ConcatFeedforwardLayer,
    ConcatFeedforwardLayerParameters,
    ConcatLayer,
    MergeLayerParameters,
    ProductLayer,
    SubLayer,
    SumLayer,
)
from .models.recurrent import (
    CFNLayer,
    CFNLayerParameters,
    DeltaRNNLayer,
    DeltaRNNLayerParameters,
    GRULayer,
    GRULayerParameters,
    IndRNNLayer,
    IndRNNLayerParameters,
    LSTMLayer,
    LSTMLayerParameters,
    LTMLayer,
    LTMLayerParameters,
    RANLayer,
    RANLayerParameters,
    SimpleRecurrentLayer,
    SimpleRecurrentLayerParameters,
    TPRLayer,
    TPRLayerParameters,
)
from .parameters import LayerParameters
from .windows import LayersWindow

logger = logging.getLogger(__name__)

TPR_DEFAULTS = {"n_symbols": 100, "d_symbols": 10, "n_roles": 20, "d_roles": 10, "q": 0.00001}


# ---------------------------------------------------------------------
# Shape rules
# ---------------------------------------------------------------------


def _single_input(name: str, input_sizes: List[int], output_size: int, options: Dict) -> None:
    if len(input_sizes) != 1:
        raise ConfigurationError(f"{name} accepts a single input, got {len(input_sizes)}.")


def _same_size(name: str, input_sizes: List[int], output_size: int, options: Dict) -> None:
    _single_input(name, input_sizes, output_size, options)
    if output_size != input_sizes[0]:
        raise ConfigurationError(f"{name}: the output size must be equal to the input size.")


def _merge_same_size(name: str, input_sizes: List[int], output_size: int, options: Dict) -> None:
    if any(s != input_sizes[0] for s in input_sizes):
        raise ConfigurationError(f"{name}: all the inputs must have the same size.")
    if output_size != input_sizes[0]:
        raise ConfigurationError(f"{name}: the output size must be equal to the inputs size.")


def _two_inputs(name: str, input_sizes: List[int], output_size: int, options: Dict) -> None:
    if len(input_sizes) != 2:
        raise ConfigurationError(f"{name} requires exactly 2 inputs, got {len(input_sizes)}.")


def _sub(name: str, input_sizes: List[int], output_size: int, options: Dict) -> None:
    _two_inputs(name, input_sizes, output_size, options)
    _merge_same_size(name, input_sizes, output_size, options)


def _concat(name: str, input_sizes: List[int], output_size: int, options: Dict) -> None:
    if output_size != sum(input_sizes):
        raise ConfigurationError(f"{name}: the output size must be equal to the sum of the input sizes.")


def _scalar(name: str, input_sizes: List[int], output_size: int, options: Dict) -> None:
    _single_input(name, input_sizes, output_size, options)
    if output_size != 1:
        raise ConfigurationError(f"{name}: the output size must be 1.")


def _any_inputs(name: str, input_sizes: List[int], output_size: int, options: Dict) -> None:
    pass


def _tpr(name: str, input_sizes: List[int], output_size: int, options: Dict) -> None:
    _single_input(name, input_sizes, output_size, options)
    opts = {**TPR_DEFAULTS, **options}
    if output_size != opts["d_symbols"] * opts["d_roles"]:
        raise ConfigurationError(f"{name}: the output size must be d_symbols * d_roles.")


@dataclass(frozen=True)
class Variant:
    layer_class: type
    params_class: type
    check: Callable[[str, List[int], int, Dict], None]
    build_params: Callable[[List[int], int, Dict], LayerParameters]


def _single(params_class):
    return lambda input_sizes, output_size, options: params_class(input_sizes[0], output_size)


def _merge_params(input_sizes, output_size, options):
    return MergeLayerParameters(input_sizes, output_size)


VARIANTS: Dict[ConnectionType, Variant] = {
    ConnectionType.FEEDFORWARD: Variant(
        FeedforwardLayer, FeedforwardLayerParameters, _single_input, _single(FeedforwardLayerParameters)
    ),
    ConnectionType.HIGHWAY: Variant(
        HighwayLayer, HighwayLayerParameters, _same_size, _single(HighwayLayerParameters)
    ),
    ConnectionType.NORM: Variant(
        NormLayer, NormLayerParameters, _same_size, lambda i, o, opts: NormLayerParameters(o)
    ),
    ConnectionType.BATCH_NORM: Variant(
        BatchNormLayer,
        BatchNormLayerParameters,
        _merge_same_size,
        lambda i, o, opts: BatchNormLayerParameters(len(i), o),
    ),
    ConnectionType.SQUARED_DISTANCE: Variant(
        SquaredDistanceLayer,
        SquaredDistanceLayerParameters,
        _scalar,
        lambda i, o, opts: SquaredDistanceLayerParameters(i[0], opts.get("rank", i[0])),
    ),
    ConnectionType.CONCAT: Variant(ConcatLayer, MergeLayerParameters, _concat, _merge_params),
    ConnectionType.CONCAT_FEEDFORWARD: Variant(
        ConcatFeedforwardLayer,
        ConcatFeedforwardLayerParameters,
        _any_inputs,
        lambda i, o, opts: ConcatFeedforwardLayerParameters(i, o),
    ),
    ConnectionType.SUM: Variant(SumLayer, MergeLayerParameters, _merge_same_size, _merge_params),
    ConnectionType.SUB: Variant(SubLayer, MergeLayerParameters, _sub, _merge_params),
    ConnectionType.AVG: Variant(AvgLayer, MergeLayerParameters, _merge_same_size, _merge_params),
    ConnectionType.PRODUCT: Variant(ProductLayer, MergeLayerParameters, _merge_same_size, _merge_params),
    ConnectionType.AFFINE: Variant(
        AffineLayer, AffineLayerParameters, _any_inputs, lambda i, o, opts: AffineLayerParameters(i, o)
    ),
    ConnectionType.BIAFFINE: Variant(
        BiaffineLayer,
        BiaffineLayerParameters,
        _two_inputs,
        lambda i, o, opts: BiaffineLayerParameters(i[0], i[1], o),
    ),
    ConnectionType.SIMPLE_RECURRENT: Variant(
        SimpleRecurrentLayer,
        SimpleRecurrentLayerParameters,
        _single_input,
        _single(SimpleRecurrentLayerParameters),
    ),
    ConnectionType.INDRNN: Variant(
        IndRNNLayer, IndRNNLayerParameters, _single_input, _single(IndRNNLayerParameters)
    ),
    ConnectionType.GRU: Variant(GRULayer, GRULayerParameters, _single_input, _single(GRULayerParameters)),
    ConnectionType.LSTM: Variant(LSTMLayer, LSTMLayerParameters, _single_input, _single(LSTMLayerParameters)),
    ConnectionType.CFN: Variant(CFNLayer, CFNLayerParameters, _single_input, _single(CFNLayerParameters)),
    ConnectionType.RAN: Variant(RANLayer, RANLayerParameters, _single_input, _single(RANLayerParameters)),
    ConnectionType.DELTA_RNN: Variant(
        DeltaRNNLayer, DeltaRNNLayerParameters, _single_input, _single(DeltaRNNLayerParameters)
    ),
    ConnectionType.LTM: Variant(
        LTMLayer, LTMLayerParameters, _same_size, lambda i, o, opts: LTMLayerParameters(o)
    ),
    ConnectionType.TPR: Variant(
        TPRLayer,
        TPRLayerParameters,
        _tpr,
        lambda i, o, opts: TPRLayerParameters(
            i[0],
            n_symbols=opts.get("n_symbols", TPR_DEFAULTS["n_symbols"]),
            d_symbols=opts.get("d_symbols", TPR_DEFAULTS["d_symbols"]),
            n_roles=opts.get("n_roles", TPR_DEFAULTS["n_roles"]),
            d_roles=opts.get("d_roles", TPR_DEFAULTS["d_roles"]),
        ),
    ),
}


# ---------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------


def layer_parameters_factory(
    input_sizes: Union[int, Sequence[int]],
    output_size: int,
    connection_type: Union[str, ConnectionType],
    weights_initializer: Optional[Union[str, Initializer]] = "glorot",
    biases_initializer: Optional[Union[str, Initializer]] = "glorot",
    **options: Any,
) -> LayerParameters:
    """
    Build and initialize the parameters of a layer variant.

    Args:
        input_sizes: The input size, or the sizes of the inputs of a merge layer.
        output_size: The output size.
        connection_type: The layer variant.
        weights_initializer: Initializer (or its name) of the weights; None for zeros.
        biases_initializer: Initializer (or its name) of the biases; None for zeros.
        **options: Variant options (`rank`, TPR sizes).

    Raises:
        ConfigurationError: If the sizes break the rule of the variant.
    """
    if isinstance(input_sizes, int):
        input_sizes = [input_sizes]
    input_sizes = [int(s) for s in input_sizes]
    try:
        connection_type = ConnectionType.from_name(connection_type)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    variant = VARIANTS[connection_type]

    variant.check(connection_type.value, input_sizes, output_size, options)
    params = variant.build_params(input_sizes, output_size, options)
    params.initialize(get_initializer(weights_initializer), get_initializer(biases_initializer))
    logger.debug("Built %s parameters: inputs=%s output=%d", connection_type.value, input_sizes, output_size)
    return params


# ---------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------


def build_input_array(input_type: Union[str, InputType], size: int) -> AugmentedArray:
    """An empty input array of the given encoding."""
    input_type = InputType.from_name(input_type)
    if input_type is InputType.DENSE:
        return AugmentedArray.zeros(size)
    if input_type is InputType.SPARSE:
        return AugmentedArray(SparseArray(size, [], []))
    return AugmentedArray(SparseBinaryArray(size, []))


def build_layer(
    input_arrays: Union[AugmentedArray, Sequence[AugmentedArray]],
    output_configuration: LayerInterface,
    params: LayerParameters,
    dropout: float = 0.0,
    layers_window: Optional[LayersWindow] = None,
    rng=None,
) -> Layer:
    """
    Build the layer described by `output_configuration` on existing input arrays.

    Raises:
        ConfigurationError: If the connection type is missing, the parameters
            do not belong to it, the sizes break its rule, or a recurrent
            layer gets no layers window.
    """
    if isinstance(input_arrays, AugmentedArray):
        input_arrays = [input_arrays]
    input_arrays = list(input_arrays)

    connection_type = output_configuration.connection_type
    if connection_type is None:
        raise ConfigurationError("The output configuration of a layer requires a connection type.")
    variant = VARIANTS[connection_type]
    if not isinstance(params, variant.params_class):
        raise ConfigurationError(
            f"{connection_type.value} requires {variant.params_class.__name__}, got {type(params).__name__}."
        )
    variant.check(
        connection_type.value,
        [a.size for a in input_arrays],
        output_configuration.size,
        output_configuration.options,
    )
    if connection_type.is_recurrent and layers_window is None:
        raise ConfigurationError(f"{connection_type.value} requires a layers window.")

    activation = output_configuration.activation
    output_array = AugmentedArray.zeros(output_configuration.size)
    layer_class = variant.layer_class

    if connection_type is ConnectionType.BATCH_NORM:
        output_arrays = [AugmentedArray.zeros(output_configuration.size) for _ in input_arrays]
        return layer_class(input_arrays, output_arrays, params, activation, dropout, rng)
    if connection_type is ConnectionType.TPR:
        q = output_configuration.options.get("q", TPR_DEFAULTS["q"])
        return layer_class(input_arrays[0], output_array, params, layers_window, dropout, rng, q=q)
    if connection_type.is_recurrent:
        return layer_class(input_arrays[0], output_array, params, layers_window, activation, dropout, rng)
    if connection_type.is_merge:
        return layer_class(input_arrays, output_array, params, activation, dropout, rng)
    return layer_class(input_arrays[0], output_array, params, activation, dropout, rng)


def layer_factory(
    input_configuration: LayerInterface,
    output_configuration: LayerInterface,
    params: LayerParameters,
    dropout: float = 0.0,
    layers_window: Optional[LayersWindow] = None,
    rng=None,
) -> Layer:
    """Build a layer with fresh input arrays of the encoding of `input_configuration`."""
    input_arrays = [build_input_array(input_configuration.type, size) for size in input_configuration.sizes]
    return build_layer(input_arrays, output_configuration, params, dropout, layers_window, rng)
