# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging

import numpy as np
import pytest

from layerstack import (
    ConfigurationError,
    ConnectionType,
    FixedLayersWindow,
    InputType,
    LayerInterface,
    SparseBinaryArray,
    layer_factory,
    layer_parameters_factory,
)
from layerstack.factory import VARIANTS, build_input_array
from layerstack.models.feedforward import FeedforwardLayer, FeedforwardLayerParameters
from layerstack.initializers import Initializer
from layerstack.models.merge import BatchNormLayer, MergeLayer, MergeLayerParameters
from layerstack.models.recurrent import GRULayer, RecurrentLayer, TPRLayer

logger = logging.getLogger(__name__)


def test_every_connection_type_has_a_variant():
    assert set(VARIANTS) == set(ConnectionType)


def test_layer_parameters_factory_builds_the_variant_params():
    params = layer_parameters_factory(4, 3, "Feedforward")
    assert isinstance(params, FeedforwardLayerParameters)
    assert params.unit.w.shape == (3, 4)
    assert params.unit.b.shape == (3,)


def test_zeros_initialization():
    params = layer_parameters_factory(4, 3, ConnectionType.GRU, weights_initializer=None, biases_initializer=None)
    assert all(not p.values.any() for p in params.params_list)


def test_glorot_initialization_by_default():
    params = layer_parameters_factory(4, 3, "LSTM")
    limit = np.sqrt(6.0 / (4 + 3))
    w = params.input_gate.w.values
    assert w.any()
    assert np.all(np.abs(w) <= limit)


@pytest.mark.parametrize(
    "connection, input_sizes, output_size",
    [
        ("Highway", [4], 5),
        ("Norm", [4], 3),
        ("LTM", [4], 5),
        ("SquaredDistance", [4], 2),
        ("Sum", [3, 4], 3),
        ("Sub", [3, 3, 3], 3),
        ("Sub", [3], 3),
        ("Biaffine", [3], 3),
        ("Concat", [3, 2], 4),
        ("Feedforward", [3, 2], 4),
        ("GRU", [3, 2], 4),
        ("BatchNorm", [3, 4], 3),
        ("TPR", [4], 7),
    ],
)
def test_shape_rules(connection, input_sizes, output_size):
    with pytest.raises(ConfigurationError):
        layer_parameters_factory(input_sizes, output_size, connection)


def test_unknown_connection_type():
    with pytest.raises(ConfigurationError):
        layer_parameters_factory(4, 3, "Transformer")


def test_tpr_sizes_from_options():
    params = layer_parameters_factory(4, 6, "TPR", n_symbols=3, d_symbols=2, n_roles=4, d_roles=3)
    assert params.symbols.shape == (2, 3)
    assert params.roles.shape == (3, 4)
    assert params.w_rec_s.shape == (3, 6)


def test_recurrent_layer_requires_a_window():
    params = layer_parameters_factory(4, 5, "GRU")
    with pytest.raises(ConfigurationError):
        layer_factory(LayerInterface(size=4), LayerInterface(size=5, connection_type="GRU"), params)


def test_recurrent_layer_with_window():
    params = layer_parameters_factory(4, 5, "GRU")
    layer = layer_factory(
        LayerInterface(size=4),
        LayerInterface(size=5, connection_type="GRU", activation="tanh"),
        params,
        layers_window=FixedLayersWindow(),
    )
    assert isinstance(layer, GRULayer)
    assert isinstance(layer, RecurrentLayer)
    assert layer.prev_state() is None


def test_params_of_another_variant_are_rejected():
    params = layer_parameters_factory(4, 5, "Feedforward")
    with pytest.raises(ConfigurationError):
        layer_factory(
            LayerInterface(size=4),
            LayerInterface(size=5, connection_type="GRU"),
            params,
            layers_window=FixedLayersWindow(),
        )


def test_missing_connection_type():
    params = layer_parameters_factory(4, 5, "Feedforward")
    with pytest.raises(ConfigurationError):
        layer_factory(LayerInterface(size=4), LayerInterface(size=5), params)


def test_input_encodings():
    assert isinstance(build_input_array("dense", 3).values, np.ndarray)
    assert build_input_array(InputType.SPARSE_BINARY, 3).size == 3

    params = layer_parameters_factory(6, 2, "Feedforward")
    layer = layer_factory(
        LayerInterface(size=6, type="sparse_binary"),
        LayerInterface(size=2, connection_type="Feedforward"),
        params,
    )
    assert isinstance(layer, FeedforwardLayer)
    assert layer.input_type is InputType.SPARSE_BINARY
    layer.set_input(SparseBinaryArray(6, [2]))
    layer.forward()
    np.testing.assert_allclose(layer.output_array.values, params.unit.w.values[:, 2] + params.unit.b.values)


def test_merge_layers_require_dense_inputs():
    params = layer_parameters_factory([3, 3], 3, "Sum")
    with pytest.raises(ConfigurationError):
        layer_factory(
            LayerInterface(sizes=[3, 3], type="sparse"),
            LayerInterface(size=3, connection_type="Sum"),
            params,
        )


def test_batch_norm_has_one_output_per_input():
    params = layer_parameters_factory([3, 3, 3], 3, "BatchNorm")
    layer = layer_factory(
        LayerInterface(sizes=[3, 3, 3]),
        LayerInterface(size=3, connection_type="BatchNorm"),
        params,
    )
    assert isinstance(layer, BatchNormLayer)
    assert len(layer.output_arrays) == 3


def test_tpr_layer_gets_q_from_options():
    params = layer_parameters_factory(4, 6, "TPR", n_symbols=3, d_symbols=2, n_roles=4, d_roles=3)
    layer = layer_factory(
        LayerInterface(size=4),
        LayerInterface(size=6, connection_type="TPR", n_symbols=3, d_symbols=2, n_roles=4, d_roles=3, q=0.5),
        params,
        layers_window=FixedLayersWindow(),
    )
    assert isinstance(layer, TPRLayer)
    assert layer.q == 0.5
    layer.set_input(np.ones(4))
    layer.forward()
    assert layer.binding_matrix.shape == (2, 3)


def test_merge_layer_requires_its_merge_rules():
    class ForwardOnly(MergeLayer):
        connection_type = ConnectionType.SUM

        def _merge(self, xs):
            return np.sum(xs, axis=0)

    inputs = [build_input_array("dense", 3), build_input_array("dense", 3)]
    with pytest.raises(TypeError):
        ForwardOnly(inputs, build_input_array("dense", 3), MergeLayerParameters([3, 3], 3))


def test_initializer_requires_initialize():
    class Unfinished(Initializer):
        pass

    with pytest.raises(TypeError):
        Unfinished()
