# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Time-step windows.

A recurrent layer reaches the same-position layer of the previous and next
time steps through a `LayersWindow`. A recurrent stack reaches the whole
adjacent stacks through a `StatesWindow`. Windows never own their targets:
`IndexedStatesWindow` holds a weak reference to the sequence of steps and its
own index, and a lookup past either end of the sequence returns None.
"""

import weakref
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

from .errors import UsageOrderError

if TYPE_CHECKING:
    from .layer import Layer
    from .stacked import RecurrentStackedLayers


class LayersWindow(ABC):
    @abstractmethod
    def get_prev_state(self) -> Optional["Layer"]:
        ...

    @abstractmethod
    def get_next_state(self) -> Optional["Layer"]:
        ...


class StatesWindow(ABC):
    @abstractmethod
    def get_prev_state(self) -> Optional["RecurrentStackedLayers"]:
        ...

    @abstractmethod
    def get_next_state(self) -> Optional["RecurrentStackedLayers"]:
        ...


class EmptyStatesWindow(StatesWindow):
    """A single-step window: no previous and no next state."""

    def get_prev_state(self) -> None:
        return None

    def get_next_state(self) -> None:
        return None


class StatesSequence(list):
    """The time-step stacks of one sequence, in order (weak-referenceable)."""


class IndexedStatesWindow(StatesWindow):
    """
    The window of step `index` of a `StatesSequence`.

    Args:
        sequence: The sequence the step belongs to (weakly referenced).
        index: The position of the step in the sequence.
    """

    def __init__(self, sequence: StatesSequence, index: int) -> None:
        self._sequence = weakref.ref(sequence)
        self.index = index

    def _states(self) -> StatesSequence:
        states = self._sequence()
        if states is None:
            raise UsageOrderError("The sequence of this window has been discarded.")
        return states

    def get_prev_state(self) -> Optional["RecurrentStackedLayers"]:
        if self.index == 0:
            return None
        return self._states()[self.index - 1]

    def get_next_state(self) -> Optional["RecurrentStackedLayers"]:
        states = self._states()
        if self.index + 1 >= len(states):
            return None
        return states[self.index + 1]


class FixedLayersWindow(LayersWindow):
    """
    A window over explicitly given layers.

    Useful to run a single recurrent layer outside a stack, e.g. with a fixed
    previous state.
    """

    def __init__(self, prev_state: Optional["Layer"] = None, next_state: Optional["Layer"] = None) -> None:
        self.prev_state = prev_state
        self.next_state = next_state

    def get_prev_state(self) -> Optional["Layer"]:
        return self.prev_state

    def get_next_state(self) -> Optional["Layer"]:
        return self.next_state
