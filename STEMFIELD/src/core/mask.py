import numpy as np


def create_annular_mask(rows: int, columns: int, inner_radius: int, outer_radius: int) -> np.ndarray:
    """
    Boolean (rows, columns) selection of the ring inner_radius <= r <= outer_radius
    around the frame center (rows // 2, columns // 2). The result is read-only so it
    can be shared across worker threads.
    """
    y, x = np.ogrid[0:rows, 0:columns]
    dist2 = (y - rows // 2) ** 2 + (x - columns // 2) ** 2
    mask = (dist2 >= inner_radius ** 2) & (dist2 <= outer_radius ** 2)
    mask.flags.writeable = False
    return mask
