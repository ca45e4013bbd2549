# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Exceptions raised by layerstack.

Configuration errors surface while building parameters or layers, capability
errors when a layer is asked for something its variant cannot do, and usage
order errors when a pass reads state that the matching pass never produced.
"""


class LayerStackError(Exception):
    """Base class of every error raised by this package."""


class ConfigurationError(LayerStackError, ValueError):
    """Invalid sizes, types or context while building parameters or layers."""


class CapabilityError(LayerStackError, RuntimeError):
    """The requested operation is not available for this layer or position."""


class RelevanceNotSupportedError(CapabilityError):
    """The layer variant has no relevance propagation."""

    def __init__(self, layer_name: str) -> None:
        super().__init__(f"Relevance propagation not available for {layer_name}.")


class InitHiddenNotSetError(CapabilityError):
    """No initial hidden array was set for the requested layer position."""


class UsageOrderError(LayerStackError, RuntimeError):
    """A pass was run out of order (e.g. backward without forward)."""
