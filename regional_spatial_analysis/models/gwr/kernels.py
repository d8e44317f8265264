"""
Distance-decay kernels for geographically weighted regression.
"""
import logging
from typing import Optional

import numpy as np

from ...core.exceptions import ValidationError
from ..schemas import BandwidthMode, DistanceMetric, KernelKind

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088


def distances_from(coords: np.ndarray, i: int, metric: DistanceMetric = DistanceMetric.PLANAR) -> np.ndarray:
    """
    Distance from unit i to every unit.

    Great-circle distances use the haversine formula on (lon, lat) degrees
    and are returned in kilometres.
    """
    if metric == DistanceMetric.GREAT_CIRCLE:
        lon = np.radians(coords[:, 0])
        lat = np.radians(coords[:, 1])
        dlon = lon - lon[i]
        dlat = lat - lat[i]
        a = np.sin(dlat / 2.0) ** 2 + np.cos(lat[i]) * np.cos(lat) * np.sin(dlon / 2.0) ** 2
        return 2.0 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))

    diff = coords - coords[i]
    return np.hypot(diff[:, 0], diff[:, 1])


def kernel_function(d: np.ndarray, h: float, kernel: KernelKind) -> np.ndarray:
    """Kernel weights for distances d at bandwidth h."""
    h = max(float(h), np.finfo(float).tiny)
    u = d / h
    if kernel == KernelKind.GAUSSIAN:
        return np.exp(-0.5 * u ** 2)
    return np.where(u < 1.0, (1.0 - u ** 2) ** 2, 0.0)


class KernelWeighter:
    """
    Kernel weights of every unit relative to a focal unit.

    Attributes:
        coords (np.ndarray): (n, 2) unit coordinates.
        kernel (KernelKind): Gaussian or bisquare.
        mode (BandwidthMode): Fixed distance or adaptive nearest-neighbor count.
        metric (DistanceMetric): Planar or great-circle distances.
    """

    def __init__(
        self,
        coords: np.ndarray,
        kernel: KernelKind = KernelKind.BISQUARE,
        mode: BandwidthMode = BandwidthMode.ADAPTIVE,
        metric: DistanceMetric = DistanceMetric.PLANAR
    ):
        coords = np.asarray(coords, dtype=float)
        if coords.ndim != 2 or coords.shape[1] != 2:
            raise ValidationError(f"Coordinates must have shape (n, 2), got {coords.shape}", stage='gwr')
        if not np.all(np.isfinite(coords)):
            raise ValidationError("Coordinates contain non-finite values", stage='gwr')

        self.coords = coords
        self.kernel = KernelKind(kernel)
        self.mode = BandwidthMode(mode)
        self.metric = DistanceMetric(metric)

    @property
    def n(self) -> int:
        return self.coords.shape[0]

    def check_bandwidth(self, bandwidth: float) -> None:
        """Raise ValidationError if the bandwidth is unusable for this mode."""
        if self.mode == BandwidthMode.ADAPTIVE:
            if int(bandwidth) != bandwidth or not 1 <= bandwidth <= self.n - 1:
                raise ValidationError(
                    f"Adaptive bandwidth must be an integer in [1, {self.n - 1}], got {bandwidth}",
                    stage='gwr'
                )
        elif not bandwidth > 0:
            raise ValidationError(f"Fixed bandwidth must be positive, got {bandwidth}", stage='gwr')

    def local_bandwidth(self, d: np.ndarray, i: int, bandwidth: float) -> float:
        """Fixed h, or the distance from i to its k-th nearest other unit."""
        if self.mode == BandwidthMode.FIXED:
            return float(bandwidth)
        k = int(bandwidth)
        others = np.delete(d, i)
        return float(np.partition(others, k - 1)[k - 1])

    def weights(self, i: int, bandwidth: float, exclude_focal: bool = False, d: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Kernel weight of every unit for focal unit i.

        The focal unit receives weight 1, or 0 when ``exclude_focal`` is set.
        """
        if d is None:
            d = distances_from(self.coords, i, self.metric)
        h = self.local_bandwidth(d, i, bandwidth)
        w = kernel_function(d, h, self.kernel)
        w[i] = 0.0 if exclude_focal else 1.0
        return w
