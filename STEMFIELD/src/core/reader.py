"""Decoding of the detector block stream.

Each block on the wire is:

    [1024 x <u4 header words] + [images_in_block * rows * columns x <u2 samples]

Header words: 0 images_in_block, 1 rows, 2 columns, 3 version, 4 timestamp,
5..9 reserved, 10.. one image number per image in block order. A block whose
version is 0 marks the end of the stream, as does a clean end of file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

import numpy as np

from STEMFIELD.src.core.errors import InvalidHeader, OpenFailure, TruncatedRecord
from STEMFIELD.src.core.types import EMPTY_BLOCK, Block, Header

logger = logging.getLogger(__name__)

HEADER_WORDS = 1024
HEADER_SIZE = HEADER_WORDS * 4
RESERVED_WORDS = 5
IMAGE_NUMBERS_OFFSET = 5 + RESERVED_WORDS
MAX_IMAGES_IN_BLOCK = HEADER_WORDS - IMAGE_NUMBERS_OFFSET
READ_CHUNK = 1 << 20

WORD_DTYPE = np.dtype("<u4")
SAMPLE_DTYPE = np.dtype("<u2")

Source = Union[str, Path, BinaryIO]


def _parse_header(raw: bytes) -> Header:
    words = np.frombuffer(raw, dtype=WORD_DTYPE, count=HEADER_WORDS)
    images_in_block = int(words[0])
    if images_in_block > MAX_IMAGES_IN_BLOCK:
        raise InvalidHeader(
            f"Header declares {images_in_block} images; at most {MAX_IMAGES_IN_BLOCK} fit"
        )

    numbers = words[IMAGE_NUMBERS_OFFSET:IMAGE_NUMBERS_OFFSET + images_in_block]
    return Header(
        images_in_block=images_in_block,
        rows=int(words[1]),
        columns=int(words[2]),
        version=int(words[3]),
        timestamp=int(words[4]),
        image_numbers=tuple(int(n) for n in numbers),
    )


def pack_header(header: Header) -> bytes:
    """Serialize a header into its fixed-size wire form."""
    if header.images_in_block > MAX_IMAGES_IN_BLOCK:
        raise InvalidHeader(f"Too many images for one header: {header.images_in_block}")
    if len(header.image_numbers) != header.images_in_block:
        raise InvalidHeader(
            f"Expected {header.images_in_block} image numbers, got {len(header.image_numbers)}"
        )

    words = np.zeros(HEADER_WORDS, dtype=WORD_DTYPE)
    words[0] = header.images_in_block
    words[1] = header.rows
    words[2] = header.columns
    words[3] = header.version
    words[4] = header.timestamp
    words[IMAGE_NUMBERS_OFFSET:IMAGE_NUMBERS_OFFSET + header.images_in_block] = header.image_numbers
    return words.tobytes()


def pack_block(block: Block) -> bytes:
    """Serialize a header and its samples, the inverse of ``StreamReader.read``."""
    data = np.ascontiguousarray(block.data, dtype=SAMPLE_DTYPE).reshape(-1)
    if data.size != block.header.sample_count:
        raise InvalidHeader(
            f"Header describes {block.header.sample_count} samples, buffer holds {data.size}"
        )
    return pack_header(block.header) + data.tobytes()


class StreamReader:
    """Sequential reader over a file path or an open binary stream."""

    def __init__(self, source: Source):
        if isinstance(source, (str, Path)):
            try:
                self._stream = open(source, "rb")
            except OSError as e:
                raise OpenFailure(f"Unable to open file: {source}") from e
            self._owns_stream = True
            self.name = str(source)
        else:
            self._stream = source
            self._owns_stream = False
            self.name = getattr(source, "name", repr(source))
        self.blocks_read = 0

    def _read_exact(self, size: int, what: str, allow_eof: bool = False) -> Optional[bytearray]:
        """
        Read exactly ``size`` bytes in bounded chunks. Returns None when
        ``allow_eof`` is set and the source is already exhausted.
        """
        buf = bytearray()
        while len(buf) < size:
            chunk = self._stream.read(min(size - len(buf), READ_CHUNK))
            if not chunk:
                break
            buf += chunk

        if allow_eof and not buf:
            return None
        if len(buf) < size:
            raise TruncatedRecord(
                f"Unexpected EOF while reading {what} of block {self.blocks_read} "
                f"in {self.name}: expected {size} bytes, got {len(buf)}"
            )
        return buf

    def read_header(self) -> Header:
        return _parse_header(bytes(self._read_exact(HEADER_SIZE, "header")))

    def read(self) -> Block:
        """Return the next block, or ``EMPTY_BLOCK`` at a clean end of file."""
        raw = self._read_exact(HEADER_SIZE, "header", allow_eof=True)
        if raw is None:
            return EMPTY_BLOCK

        header = _parse_header(bytes(raw))
        payload = self._read_exact(header.sample_count * SAMPLE_DTYPE.itemsize, "payload")
        self.blocks_read += 1
        logger.debug(
            "Block %d: %d images of %dx%d, version %d",
            self.blocks_read, header.images_in_block, header.rows, header.columns, header.version,
        )
        return Block(header, np.frombuffer(payload, dtype=SAMPLE_DTYPE))

    def __iter__(self) -> Iterator[Block]:
        while True:
            block = self.read()
            if block.is_sentinel:
                return
            yield block

    def close(self) -> None:
        if self._owns_stream:
            self._stream.close()

    def __enter__(self) -> "StreamReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
