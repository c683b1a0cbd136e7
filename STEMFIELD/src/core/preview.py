"""PNG rendering of the aggregated bright/dark fields."""

from __future__ import annotations

import logging
from pathlib import Path

import matplotlib
import matplotlib.pyplot as plt

from STEMFIELD.src.core.types import OutputFields

matplotlib.use("Agg")

logger = logging.getLogger(__name__)


def save_field_preview(fields: OutputFields, width: int, height: int, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    bright = fields.bright.reshape(height, width).astype(float)
    dark = fields.dark.reshape(height, width).astype(float)

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(12, 6))
    for ax, img, title in ((ax1, bright, "Bright field"), (ax2, dark, "Dark field")):
        im = ax.imshow(img, cmap="gray", origin="upper")
        ax.set_title(title)
        ax.set_xlabel("Scan X (px)")
        ax.set_ylabel("Scan Y (px)")
        fig.colorbar(im, ax=ax, fraction=0.046, pad=0.04)

    plt.tight_layout()
    plt.savefig(path)
    plt.close(fig)
    logger.info("Preview saved to %s", path)
    return path
