import io
import time
import numpy as np
from STEMFIELD.config import Config
from STEMFIELD.src.core.pipeline import AggregationPipeline
from STEMFIELD.src.core.reader import StreamReader, pack_block, pack_header
from STEMFIELD.src.core.types import Block, Header

def make_stream(scan_w, scan_h, rows, cols, images_per_block, seed=0):
    rng = np.random.default_rng(seed)
    total = scan_w * scan_h
    parts = []
    for start in range(1, total + 1, images_per_block):
        numbers = tuple(range(start, min(start + images_per_block, total + 1)))
        header = Header(len(numbers), rows, cols, 2, int(time.time()), numbers)
        data = rng.integers(0, 1024, size=header.sample_count, dtype=np.uint16)
        parts.append(pack_block(Block(header, data)))
    parts.append(pack_header(Header()))
    return b"".join(parts)

def test_perf():
    config = Config()
    config.CHECK_GRID_DIMENSIONS = False

    # 32x32 scan of 128x128 frames, 32 frames per block
    scan_w, scan_h, rows, cols = 32, 32, 128, 128
    print(f"Creating {scan_w}x{scan_h} scan of {rows}x{cols} frames...")
    raw = make_stream(scan_w, scan_h, rows, cols, 32)
    print(f"Stream size: {len(raw) / 1e6:.1f} MB")

    for concurrency in (1, 2, 4, -1):
        config.CONCURRENCY = concurrency
        pipeline = AggregationPipeline(config, scan_w, scan_h)

        start = time.time()
        fields = pipeline.run(StreamReader(io.BytesIO(raw)))
        end = time.time()

        rate = len(raw) / (end - start) / 1e6
        print(f"Concurrency {concurrency:>2}: {end - start:.3f} s ({rate:.0f} MB/s)")

        if np.count_nonzero(fields.bright) != scan_w * scan_h:
            print("FAIL: Missing images in bright field!")
        elif np.any(fields.dark > fields.bright):
            print("FAIL: Dark field exceeds bright field!")
        else:
            print("PASS")

if __name__ == "__main__":
    test_perf()
