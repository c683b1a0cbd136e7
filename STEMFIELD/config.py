"""Pipeline configuration with simple JSON persistence."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class Config:
    # Worker pool
    CONCURRENCY: int = -1  # -1 = host hardware concurrency
    MAX_PENDING_BLOCKS: int = 0  # 0 = twice the worker count

    # Detector masks (pixels)
    BRIGHT_INNER_RADIUS: int = 0
    DARK_INNER_RADIUS: int = 40
    OUTER_RADIUS: int = 288

    # Output grid
    CHECK_GRID_DIMENSIONS: bool = True
    IMAGE_ID: int = 1

    # File sink
    OUTPUT_DIR: str = "."

    # Pub/sub sink
    PUB_ENDPOINT: str = ""
    PUB_BIND: bool = False
    PUB_SETTLE_S: float = 0.2
    EVENT_PREFIX: str = "stem"

    # Preview
    SAVE_PREVIEW: bool = False
    PREVIEW_DIR: str = "plots"

    @staticmethod
    def default_path() -> Path:
        return Path.home() / ".stemfield_config.json"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        cfg = cls()
        cfg_path = path or cls.default_path()
        if not cfg_path.exists():
            return cfg

        try:
            data = json.loads(cfg_path.read_text())
        except Exception:
            logger.exception("Failed to read config file: %s", cfg_path)
            return cfg

        for f in fields(cfg):
            if f.name not in data:
                continue
            raw = data[f.name]
            current = getattr(cfg, f.name)
            try:
                if isinstance(current, bool):
                    val = bool(raw)
                elif isinstance(current, int):
                    val = int(raw)
                elif isinstance(current, float):
                    val = float(raw)
                else:
                    val = str(raw)
                setattr(cfg, f.name, val)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid config value for %s", f.name)

        unknown = sorted(set(data) - {f.name for f in fields(cfg)})
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))

        cfg.normalize()
        return cfg

    def save(self, path: Optional[Path] = None) -> None:
        cfg_path = path or self.default_path()
        cfg_path.write_text(json.dumps(asdict(self), indent=2, sort_keys=True))

    def normalize(self) -> None:
        if self.BRIGHT_INNER_RADIUS > self.OUTER_RADIUS:
            self.BRIGHT_INNER_RADIUS, self.OUTER_RADIUS = self.OUTER_RADIUS, self.BRIGHT_INNER_RADIUS
        if self.DARK_INNER_RADIUS > self.OUTER_RADIUS:
            self.DARK_INNER_RADIUS, self.OUTER_RADIUS = self.OUTER_RADIUS, self.DARK_INNER_RADIUS
        self.BRIGHT_INNER_RADIUS = max(0, self.BRIGHT_INNER_RADIUS)
        self.DARK_INNER_RADIUS = max(0, self.DARK_INNER_RADIUS)
        self.MAX_PENDING_BLOCKS = max(0, self.MAX_PENDING_BLOCKS)
        self.PUB_SETTLE_S = max(0.0, self.PUB_SETTLE_S)
        if self.CONCURRENCY == 0 or self.CONCURRENCY < -1:
            self.CONCURRENCY = -1
