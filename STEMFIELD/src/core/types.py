"""Shared core data structures for the block stream and its aggregates."""

from __future__ import annotations

from typing import NamedTuple

import numpy as np

SENTINEL_VERSION = 0


class Header(NamedTuple):
    """Fixed-layout block header. ``image_numbers`` are 1-based, in block order."""

    images_in_block: int = 0
    rows: int = 0
    columns: int = 0
    version: int = SENTINEL_VERSION
    timestamp: int = 0
    image_numbers: tuple[int, ...] = ()

    @property
    def pixels_per_image(self) -> int:
        return self.rows * self.columns

    @property
    def sample_count(self) -> int:
        return self.rows * self.columns * self.images_in_block


class Block(NamedTuple):
    """A header plus its ``uint16`` samples, image-major then row-major."""

    header: Header
    data: np.ndarray

    @property
    def is_sentinel(self) -> bool:
        return self.header.version == SENTINEL_VERSION

    def images(self) -> np.ndarray:
        h = self.header
        return self.data.reshape(h.images_in_block, h.rows, h.columns)


class ImageAggregate(NamedTuple):
    """Integrated bright/dark intensity for one image."""

    image_number: int
    bright: int
    dark: int


class OutputFields(NamedTuple):
    bright: np.ndarray
    dark: np.ndarray


EMPTY_HEADER = Header()
EMPTY_BLOCK = Block(EMPTY_HEADER, np.empty(0, dtype=np.uint16))
