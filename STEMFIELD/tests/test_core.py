import io
import json
import unittest
from pathlib import Path
import tempfile
import sys
import numpy as np

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from STEMFIELD.config import Config
from STEMFIELD.src.core.errors import InvalidHeader, OpenFailure, TruncatedRecord
from STEMFIELD.src.core.mask import create_annular_mask
from STEMFIELD.src.core.reader import HEADER_SIZE, StreamReader, pack_block, pack_header
from STEMFIELD.src.core.reduction import calculate_stem_values, reduce_block
from STEMFIELD.src.core.types import EMPTY_BLOCK, Block, Header, ImageAggregate


def make_block(image_numbers, rows=2, columns=2, fill=None, version=1, timestamp=0, seed=0):
    n = len(image_numbers)
    header = Header(n, rows, columns, version, timestamp, tuple(image_numbers))
    if fill is None:
        data = np.random.default_rng(seed).integers(0, 65536, size=header.sample_count, dtype=np.uint16)
    else:
        data = np.full(header.sample_count, fill, dtype=np.uint16)
    return Block(header, data)


SENTINEL_BYTES = pack_header(Header())


class TestConfig(unittest.TestCase):
    def test_save_load_roundtrip(self):
        cfg = Config()
        cfg.CONCURRENCY = 3
        cfg.DARK_INNER_RADIUS = 25
        cfg.PUB_ENDPOINT = "tcp://127.0.0.1:5556"
        cfg.SAVE_PREVIEW = True

        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            cfg.save(path)
            loaded = Config.load(path)

        self.assertEqual(loaded.CONCURRENCY, 3)
        self.assertEqual(loaded.DARK_INNER_RADIUS, 25)
        self.assertEqual(loaded.PUB_ENDPOINT, "tcp://127.0.0.1:5556")
        self.assertTrue(loaded.SAVE_PREVIEW)

    def test_missing_file_gives_defaults(self):
        with tempfile.TemporaryDirectory() as td:
            loaded = Config.load(Path(td) / "absent.json")
        self.assertEqual(loaded, Config())

    def test_invalid_values_are_ignored(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            path.write_text(json.dumps({"OUTER_RADIUS": "wide", "IMAGE_ID": 4, "BOGUS": 1}))
            loaded = Config.load(path)
        self.assertEqual(loaded.OUTER_RADIUS, Config().OUTER_RADIUS)
        self.assertEqual(loaded.IMAGE_ID, 4)

    def test_normalize_repairs_radii_and_limits(self):
        cfg = Config(DARK_INNER_RADIUS=300, OUTER_RADIUS=40, MAX_PENDING_BLOCKS=-5, CONCURRENCY=0)
        cfg.normalize()
        self.assertEqual((cfg.DARK_INNER_RADIUS, cfg.OUTER_RADIUS), (40, 300))
        self.assertEqual(cfg.MAX_PENDING_BLOCKS, 0)
        self.assertEqual(cfg.CONCURRENCY, -1)


class TestStreamReader(unittest.TestCase):
    def test_roundtrip(self):
        block = make_block([7, 3, 9], rows=3, columns=5, timestamp=123456)
        raw = pack_block(block)
        self.assertEqual(len(raw), HEADER_SIZE + 3 * 3 * 5 * 2)

        decoded = StreamReader(io.BytesIO(raw)).read()
        self.assertEqual(decoded.header, block.header)
        np.testing.assert_array_equal(decoded.data, block.data)
        self.assertEqual(pack_block(decoded), raw)

    def test_images_view_is_image_major(self):
        block = make_block([1, 2], rows=2, columns=3)
        decoded = StreamReader(io.BytesIO(pack_block(block))).read()
        images = decoded.images()
        self.assertEqual(images.shape, (2, 2, 3))
        np.testing.assert_array_equal(images[1].reshape(-1), block.data[6:12])

    def test_clean_eof_returns_empty_block(self):
        reader = StreamReader(io.BytesIO(b""))
        block = reader.read()
        self.assertIs(block, EMPTY_BLOCK)
        self.assertTrue(block.is_sentinel)

    def test_sentinel_and_clean_eof_yield_same_blocks(self):
        blocks = [make_block([1, 2], seed=1), make_block([3, 4], seed=2)]
        raw = b"".join(pack_block(b) for b in blocks)

        plain = list(StreamReader(io.BytesIO(raw)))
        with_sentinel = list(StreamReader(io.BytesIO(raw + SENTINEL_BYTES + b"trailing")))

        self.assertEqual(len(plain), 2)
        self.assertEqual(len(with_sentinel), 2)
        for a, b in zip(plain, with_sentinel):
            self.assertEqual(a.header, b.header)
            np.testing.assert_array_equal(a.data, b.data)

    def test_empty_stream_yields_nothing(self):
        self.assertEqual(list(StreamReader(io.BytesIO(b""))), [])

    def test_truncated_header(self):
        raw = pack_block(make_block([1]))[:100]
        with self.assertRaises(TruncatedRecord):
            StreamReader(io.BytesIO(raw)).read()

    def test_truncated_payload(self):
        raw = pack_block(make_block([1, 2], seed=3))
        reader = StreamReader(io.BytesIO(raw + raw[:-3]))
        reader.read()
        with self.assertRaises(TruncatedRecord) as ctx:
            reader.read()
        self.assertIsInstance(ctx.exception, ValueError)

    def test_oversized_dimensions_with_short_payload(self):
        words = np.zeros(1024, dtype="<u4")
        words[:4] = [1, 2**31, 2**31, 1]
        with self.assertRaises(TruncatedRecord):
            StreamReader(io.BytesIO(words.tobytes() + b"\x01" * 8)).read()

    def test_full_header_of_large_frames_with_short_payload(self):
        header = Header(1014, 65535, 65535, 1, 0, tuple(range(1, 1015)))
        reader = StreamReader(io.BytesIO(pack_header(header) + b"\x01" * 8))
        with self.assertRaises(TruncatedRecord) as ctx:
            reader.read()
        self.assertIn("payload", str(ctx.exception))
        self.assertEqual(reader.blocks_read, 0)

    def test_read_header_requires_full_region(self):
        with self.assertRaises(TruncatedRecord):
            StreamReader(io.BytesIO(b"")).read_header()

    def test_read_header_fields(self):
        header = Header(2, 576, 576, 2, 99, (41, 42))
        self.assertEqual(StreamReader(io.BytesIO(pack_header(header))).read_header(), header)

    def test_too_many_images_is_invalid(self):
        words = np.zeros(1024, dtype="<u4")
        words[0] = 5000
        words[3] = 1
        with self.assertRaises(InvalidHeader):
            StreamReader(io.BytesIO(words.tobytes())).read()

    def test_open_failure(self):
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(OpenFailure):
                StreamReader(Path(td) / "missing.raw")

    def test_reads_from_path(self):
        block = make_block([5], rows=4, columns=4, seed=4)
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "stream.raw"
            path.write_bytes(pack_block(block))
            with StreamReader(path) as reader:
                blocks = list(reader)
            self.assertTrue(reader._stream.closed)
        self.assertEqual(len(blocks), 1)
        np.testing.assert_array_equal(blocks[0].data, block.data)


class TestAnnularMask(unittest.TestCase):
    def test_small_grid_bright_and_dark(self):
        bright = create_annular_mask(2, 2, 0, 288)
        dark = create_annular_mask(2, 2, 40, 288)
        self.assertEqual(int(bright.sum()), 4)
        self.assertEqual(int(dark.sum()), 0)

    def test_ring_matches_distance(self):
        rows, columns, inner, outer = 9, 11, 2, 4
        mask = create_annular_mask(rows, columns, inner, outer)
        self.assertEqual(mask.shape, (rows, columns))
        for r in range(rows):
            for c in range(columns):
                d2 = (r - rows // 2) ** 2 + (c - columns // 2) ** 2
                self.assertEqual(bool(mask[r, c]), inner ** 2 <= d2 <= outer ** 2)

    def test_mask_is_read_only(self):
        mask = create_annular_mask(4, 4, 0, 2)
        with self.assertRaises(ValueError):
            mask[0, 0] = False


class TestReduction(unittest.TestCase):
    def test_masked_sums(self):
        data = np.arange(8, dtype=np.uint16)
        bright = np.array([[True, True], [True, True]])
        dark = np.array([[False, True], [False, True]])
        value = calculate_stem_values(data, 4, 4, bright, dark, 12)
        self.assertEqual(value, ImageAggregate(12, 4 + 5 + 6 + 7, 5 + 7))

    def test_no_overflow_at_full_scale(self):
        data = np.full(256 * 256, 65535, dtype=np.uint16)
        mask = np.ones((256, 256), dtype=bool)
        value = calculate_stem_values(data, 0, data.size, mask, mask, 1)
        self.assertEqual(value.bright, 65535 * 256 * 256)

    def test_mask_size_mismatch(self):
        data = np.zeros(4, dtype=np.uint16)
        with self.assertRaises(ValueError):
            calculate_stem_values(data, 0, 4, np.ones(9, dtype=bool), np.ones(4, dtype=bool), 1)

    def test_reduce_block_keeps_header_order(self):
        block = make_block([9, 4, 6], fill=2)
        mask = np.ones((2, 2), dtype=bool)
        values = reduce_block(block, mask, mask)
        self.assertEqual([v.image_number for v in values], [9, 4, 6])
        self.assertTrue(all(v.bright == 8 and v.dark == 8 for v in values))


if __name__ == "__main__":
    unittest.main()
