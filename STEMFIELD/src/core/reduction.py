"""Per-image bright/dark field integration and the per-block task body."""

from __future__ import annotations

from typing import Callable

import numpy as np

from STEMFIELD.src.core.types import Block, ImageAggregate

Reducer = Callable[[np.ndarray, int, int, np.ndarray, np.ndarray, int], ImageAggregate]


def calculate_stem_values(
    data: np.ndarray,
    offset: int,
    number_of_pixels: int,
    bright_mask: np.ndarray,
    dark_mask: np.ndarray,
    image_number: int,
) -> ImageAggregate:
    """Sum the samples of one image selected by each mask, accumulating in uint64."""
    frame = data[offset:offset + number_of_pixels]
    if frame.size != number_of_pixels:
        raise ValueError(
            f"Image {image_number}: expected {number_of_pixels} samples at offset {offset}, "
            f"buffer holds {frame.size}"
        )
    if bright_mask.size != number_of_pixels or dark_mask.size != number_of_pixels:
        raise ValueError(
            f"Mask size ({bright_mask.size}, {dark_mask.size}) != {number_of_pixels} pixels"
        )

    bright = frame.sum(dtype=np.uint64, where=bright_mask.reshape(-1))
    dark = frame.sum(dtype=np.uint64, where=dark_mask.reshape(-1))
    return ImageAggregate(int(image_number), int(bright), int(dark))


def reduce_block(
    block: Block,
    bright_mask: np.ndarray,
    dark_mask: np.ndarray,
    reducer: Reducer = calculate_stem_values,
) -> list[ImageAggregate]:
    """Reduce every image of a block, preserving the header's image order."""
    header = block.header
    number_of_pixels = header.pixels_per_image
    return [
        reducer(block.data, i * number_of_pixels, number_of_pixels, bright_mask, dark_mask, image_number)
        for i, image_number in enumerate(header.image_numbers)
    ]
