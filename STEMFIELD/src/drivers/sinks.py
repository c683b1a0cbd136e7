import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import numpy as np
import zmq

from STEMFIELD.config import Config
from STEMFIELD.src.core.types import OutputFields

logger = logging.getLogger(__name__)

FIELD_DTYPE = np.dtype("<u8")


def field_filename(kind: str, stream_id: int, image_id: int) -> str:
    return f"{kind}-{stream_id:03d}.{image_id:03d}.bin"


def load_field(path) -> np.ndarray:
    """Read back a flat uint64 field written by ``FileSink``."""
    return np.fromfile(path, dtype=FIELD_DTYPE)


class OutputSink(ABC):
    @abstractmethod
    def write(self, stream_id: int, image_id: int, fields: OutputFields) -> None: pass
    @abstractmethod
    def close(self) -> None: pass

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class FileSink(OutputSink):
    """Writes bright-NNN.MMM.bin / dark-NNN.MMM.bin as raw little-endian uint64."""

    def __init__(self, output_dir="."):
        self.output_dir = Path(output_dir)

    def write(self, stream_id: int, image_id: int, fields: OutputFields) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        for kind, data in (("bright", fields.bright), ("dark", fields.dark)):
            path = self.output_dir / field_filename(kind, stream_id, image_id)
            np.ascontiguousarray(data, dtype=FIELD_DTYPE).tofile(path)
            logger.info("Wrote %s (%d pixels)", path, data.size)

    def close(self) -> None:
        return None


class PublisherSink(OutputSink):
    """
    Publishes each field on a ZeroMQ PUB socket as a three-part message:
    [event name, JSON metadata, raw uint64 bytes]. Events are "<prefix>.bright"
    and "<prefix>.dark".
    """

    def __init__(
        self,
        endpoint: str,
        event_prefix: str = "stem",
        bind: bool = False,
        settle_s: float = 0.2,
        context: Optional[zmq.Context] = None,
    ):
        self.endpoint = endpoint
        self.event_prefix = event_prefix
        self.settle_s = float(settle_s)
        self._context = context or zmq.Context.instance()
        self._socket = self._context.socket(zmq.PUB)
        self._socket.setsockopt(zmq.LINGER, 1000)
        if bind:
            self._socket.bind(endpoint)
        else:
            self._socket.connect(endpoint)
        self._settled = False
        logger.info("Publisher %s %s", "bound to" if bind else "connected to", endpoint)

    def _emit(self, event: str, stream_id: int, image_id: int, data: np.ndarray) -> None:
        meta = {
            "streamId": str(stream_id),
            "imageId": str(image_id),
            "size": int(data.size),
            "dtype": FIELD_DTYPE.str,
        }
        payload = np.ascontiguousarray(data, dtype=FIELD_DTYPE)
        self._socket.send_multipart([event.encode(), json.dumps(meta).encode(), payload.tobytes()])
        logger.info("Published %s for stream %d (%d bytes)", event, stream_id, payload.nbytes)

    def write(self, stream_id: int, image_id: int, fields: OutputFields) -> None:
        if not self._settled:
            # PUB drops messages sent before subscribers have joined
            time.sleep(self.settle_s)
            self._settled = True
        self._emit(f"{self.event_prefix}.bright", stream_id, image_id, fields.bright)
        self._emit(f"{self.event_prefix}.dark", stream_id, image_id, fields.dark)

    def close(self) -> None:
        self._socket.close()


def create_sink(config: Config, endpoint: Optional[str] = None) -> OutputSink:
    endpoint = endpoint or config.PUB_ENDPOINT
    if endpoint:
        return PublisherSink(
            endpoint,
            event_prefix=config.EVENT_PREFIX,
            bind=config.PUB_BIND,
            settle_s=config.PUB_SETTLE_S,
        )
    return FileSink(config.OUTPUT_DIR)
