"""Producer/consumer aggregation of a block stream into bright/dark fields."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from STEMFIELD.config import Config
from STEMFIELD.src.core.errors import ConfigMismatch, WorkerFailure
from STEMFIELD.src.core.mask import create_annular_mask
from STEMFIELD.src.core.pool import WorkerPool
from STEMFIELD.src.core.reader import Source, StreamReader
from STEMFIELD.src.core.reduction import Reducer, calculate_stem_values, reduce_block
from STEMFIELD.src.core.types import Block, OutputFields
from STEMFIELD.src.drivers.sinks import OutputSink, create_sink

logger = logging.getLogger(__name__)

MaskFactory = Callable[[int, int, int, int], np.ndarray]


class AggregationPipeline:
    """
    Reads blocks on the calling thread, reduces each on the worker pool and
    scatters the per-image results into two flat uint64 fields once every
    task has been drained.

    Scatter is an overwrite keyed by image number: when an image number repeats
    across blocks, the block enqueued later wins.
    """

    def __init__(
        self,
        config: Config,
        width: int,
        height: int,
        mask_factory: MaskFactory = create_annular_mask,
        reducer: Reducer = calculate_stem_values,
    ):
        if width <= 0 or height <= 0:
            raise ConfigMismatch(f"Output grid must be positive, got {width}x{height}")
        self.config = config
        self.width = int(width)
        self.height = int(height)
        self.mask_factory = mask_factory
        self.reducer = reducer

        self.bright_mask: Optional[np.ndarray] = None
        self.dark_mask: Optional[np.ndarray] = None
        self.blocks_dispatched = 0
        self.images_scattered = 0

    @property
    def number_of_pixels(self) -> int:
        return self.width * self.height

    def _warm_up(self, block: Block) -> None:
        header = block.header
        if self.config.CHECK_GRID_DIMENSIONS and (header.rows, header.columns) != (self.height, self.width):
            raise ConfigMismatch(
                f"Output grid {self.width}x{self.height} does not match "
                f"detector grid {header.columns}x{header.rows}"
            )

        self.bright_mask = self.mask_factory(
            header.rows, header.columns, self.config.BRIGHT_INNER_RADIUS, self.config.OUTER_RADIUS
        )
        self.dark_mask = self.mask_factory(
            header.rows, header.columns, self.config.DARK_INNER_RADIUS, self.config.OUTER_RADIUS
        )
        logger.info(
            "Masks built for %dx%d frames (bright %d-%d, dark %d-%d)",
            header.rows, header.columns,
            self.config.BRIGHT_INNER_RADIUS, self.config.OUTER_RADIUS,
            self.config.DARK_INNER_RADIUS, self.config.OUTER_RADIUS,
        )

    def _dispatch(self, reader: StreamReader, pool: WorkerPool) -> list[Future]:
        pending: list[Future] = []
        while True:
            block = reader.read()
            if block.is_sentinel:
                break

            if self.bright_mask is None or self.dark_mask is None:
                self._warm_up(block)

            pending.append(pool.submit(reduce_block, block, self.bright_mask, self.dark_mask, self.reducer))
            self.blocks_dispatched += 1
        return pending

    def _scatter(self, pending: list[Future], fields: OutputFields) -> None:
        limit = self.number_of_pixels
        for index, future in enumerate(pending):
            try:
                values = future.result()
            except Exception as e:
                raise WorkerFailure(f"Block task {index} failed: {e}") from e

            for value in values:
                if not 1 <= value.image_number <= limit:
                    raise ConfigMismatch(
                        f"Image number {value.image_number} outside output grid of {limit} pixels"
                    )
                fields.bright[value.image_number - 1] = value.bright
                fields.dark[value.image_number - 1] = value.dark
                self.images_scattered += 1

    def run(self, reader: StreamReader) -> OutputFields:
        fields = OutputFields(
            np.zeros(self.number_of_pixels, dtype=np.uint64),
            np.zeros(self.number_of_pixels, dtype=np.uint64),
        )

        start = time.time()
        with WorkerPool(self.config.CONCURRENCY, self.config.MAX_PENDING_BLOCKS) as pool:
            pending = self._dispatch(reader, pool)
            logger.info("Dispatched %d blocks from %s", len(pending), reader.name)
            self._scatter(pending, fields)

        logger.info(
            "Aggregated %d images from %d blocks in %.3fs",
            self.images_scattered, self.blocks_dispatched, time.time() - start,
        )
        return fields


def process(
    source: Source,
    stream_id: int,
    concurrency: int,
    width: int,
    height: int,
    url: Optional[str] = None,
    config: Optional[Config] = None,
    sink: Optional[OutputSink] = None,
) -> OutputFields:
    """Aggregate one stream and hand both fields to the configured sink."""
    cfg = replace(config or Config(), CONCURRENCY=concurrency)

    with StreamReader(source) as reader:
        fields = AggregationPipeline(cfg, width, height).run(reader)

    out = sink or create_sink(cfg, url)
    try:
        out.write(stream_id, cfg.IMAGE_ID, fields)
    finally:
        if sink is None:
            out.close()

    if cfg.SAVE_PREVIEW:
        from STEMFIELD.src.core.preview import save_field_preview

        preview_path = Path(cfg.PREVIEW_DIR) / f"stem-{stream_id:03d}.{cfg.IMAGE_ID:03d}.png"
        save_field_preview(fields, width, height, preview_path)

    return fields
