"""
Scalar channel extraction from brightfield RGB rasters.

Two methods reduce an RGB region to one intensity channel:

1. Optical density sum - per-channel OD ``-log10(I / white)`` summed over
   R, G and B. Needs no stain information.
2. Colour deconvolution - Ruifrok & Johnston unmixing of OD pixels against
   the image's stain vectors; one stain's concentration is kept.

OD conventions: intensities are clipped to ``[1, white]`` before the log,
so OD is finite and lies in ``[0, log10(white)]``. Pixels brighter than the
reference white count as zero density.

Usage:
    from stainthresh.preprocessing.channels import StainProfile, extract_channel

    stains = StainProfile.hematoxylin_dab()
    dab = extract_channel(rgb, ChannelMethod.DECONVOLUTION, stains, "DAB")
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from stainthresh.utils.config import ChannelMethod
from stainthresh.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_WHITE = (255.0, 255.0, 255.0)


@dataclass(frozen=True)
class StainProfile:
    """
    Reference stain vectors for brightfield colour deconvolution.

    Attributes:
        names: Stain names, in vector order (1-3 entries)
        vectors: RGB optical-density vectors, normalised to unit length
        background: RGB intensity of the slide background (reference white)
        name: Optional profile name (e.g. "H-DAB default")
    """
    names: Tuple[str, ...]
    vectors: Tuple[Tuple[float, float, float], ...]
    background: Tuple[float, float, float] = DEFAULT_WHITE
    name: str = ""
    _matrix: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not 1 <= len(self.vectors) <= 3:
            raise ValueError(f"A stain profile needs 1-3 vectors, got {len(self.vectors)}")
        if len(self.names) != len(self.vectors):
            raise ValueError(
                f"Got {len(self.names)} stain names for {len(self.vectors)} vectors"
            )

        normalised = []
        for stain, vec in zip(self.names, self.vectors):
            vec = np.asarray(vec, dtype=np.float64)
            if vec.shape != (3,):
                raise ValueError(f"Stain vector for {stain!r} must have 3 components")
            norm = np.linalg.norm(vec)
            if norm == 0:
                raise ValueError(f"Stain vector for {stain!r} is zero")
            normalised.append(tuple(float(v) for v in vec / norm))

        if any(b <= 0 for b in self.background):
            raise ValueError(f"Background values must be positive, got {self.background}")

        object.__setattr__(self, 'names', tuple(self.names))
        object.__setattr__(self, 'vectors', tuple(normalised))
        object.__setattr__(self, 'background', tuple(float(b) for b in self.background))
        object.__setattr__(self, '_matrix', _complete_stain_matrix(np.array(normalised)))

    @property
    def matrix(self) -> np.ndarray:
        """3x3 stain matrix (rows = stains); missing rows are residual vectors."""
        return self._matrix.copy()

    def index_of(self, stain_name: str) -> Optional[int]:
        """Position of ``stain_name`` among the profile's stains, or None."""
        for i, name in enumerate(self.names):
            if name == stain_name:
                return i
        return None

    @classmethod
    def hematoxylin_eosin(cls) -> "StainProfile":
        """Default H&E reference vectors."""
        return cls(
            names=("Hematoxylin", "Eosin"),
            vectors=((0.65111, 0.70119, 0.29049), (0.2159, 0.8012, 0.5581)),
            name="H&E default",
        )

    @classmethod
    def hematoxylin_dab(cls) -> "StainProfile":
        """Default H-DAB reference vectors."""
        return cls(
            names=("Hematoxylin", "DAB"),
            vectors=((0.65111, 0.70119, 0.29049), (0.26917, 0.56824, 0.77759)),
            name="H-DAB default",
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StainProfile":
        """
        Parse the viewer stain description format.

        Example::

            {"Name": "H&E default",
             "Stain 1": "Hematoxylin", "Values 1": "0.65111 0.70119 0.29049",
             "Stain 2": "Eosin", "Values 2": "0.2159 0.8012 0.5581",
             "Background": "255 255 255"}
        """
        names, vectors = [], []
        for i in (1, 2, 3):
            if f"Stain {i}" not in data:
                continue
            values = data[f"Values {i}"]
            if isinstance(values, str):
                values = values.split()
            names.append(data[f"Stain {i}"])
            vectors.append(tuple(float(v) for v in values))

        background = data.get("Background", DEFAULT_WHITE)
        if isinstance(background, str):
            background = background.split()
        return cls(
            names=tuple(names),
            vectors=tuple(vectors),
            background=tuple(float(b) for b in background),
            name=data.get("Name", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Inverse of from_dict()."""
        data: Dict[str, Any] = {"Name": self.name}
        for i, (stain, vec) in enumerate(zip(self.names, self.vectors), start=1):
            data[f"Stain {i}"] = stain
            data[f"Values {i}"] = " ".join(f"{v:.5f}" for v in vec)
        data["Background"] = " ".join(f"{b:g}" for b in self.background)
        return data


def _complete_stain_matrix(vectors: np.ndarray) -> np.ndarray:
    """Pad 1 or 2 unit stain vectors to an invertible 3x3 matrix."""
    rows = [v for v in vectors]
    if len(rows) == 1:
        # Any direction not parallel to the stain; use the least aligned axis
        axis = np.eye(3)[np.argmin(np.abs(rows[0]))]
        second = np.cross(rows[0], axis)
        rows.append(second / np.linalg.norm(second))
    if len(rows) == 2:
        residual = np.cross(rows[0], rows[1])
        norm = np.linalg.norm(residual)
        if norm == 0:
            raise ValueError("Stain vectors are parallel")
        rows.append(residual / norm)

    matrix = np.array(rows, dtype=np.float64)
    if abs(np.linalg.det(matrix)) < 1e-10:
        raise ValueError("Stain matrix is singular")
    return matrix


def _rgb_channels(raster: np.ndarray) -> Optional[np.ndarray]:
    """Return the (H, W, 3) RGB part of a raster, or None if it is not RGB."""
    if raster.ndim != 3 or raster.shape[2] not in (3, 4):
        return None
    return raster[:, :, :3]


def optical_density(
    rgb: np.ndarray,
    white: Sequence[float] = DEFAULT_WHITE,
) -> np.ndarray:
    """
    Per-channel optical density of an RGB raster.

    Args:
        rgb: (H, W, 3) array, any numeric dtype
        white: Reference white per channel

    Returns:
        (H, W, 3) float32 array of ``-log10(clip(I, 1, white) / white)``
    """
    white = np.asarray(white, dtype=np.float64).reshape(1, 1, 3)
    intensity = np.clip(rgb.astype(np.float64), 1.0, white)
    return (-np.log10(intensity / white)).astype(np.float32)


def optical_density_sum(
    rgb: np.ndarray,
    white: Sequence[float] = DEFAULT_WHITE,
) -> np.ndarray:
    """Sum of the R, G and B optical densities, shape (H, W), float32."""
    return optical_density(rgb, white).sum(axis=2, dtype=np.float32)


def color_deconvolve(rgb: np.ndarray, stains: StainProfile) -> np.ndarray:
    """
    Unmix an RGB raster into per-stain concentrations.

    Args:
        rgb: (H, W, 3) array
        stains: Stain profile; its background is the reference white

    Returns:
        (H, W, 3) float32 array, channel i = stain i (channels beyond the
        profile's stains are residuals)
    """
    od = optical_density(rgb, stains.background).astype(np.float64)
    h, w, _ = od.shape
    inverse = np.linalg.inv(stains.matrix)
    concentrations = od.reshape(-1, 3) @ inverse
    return concentrations.reshape(h, w, 3).astype(np.float32)


def extract_channel(
    raster: np.ndarray,
    method: ChannelMethod,
    stains: Optional[StainProfile],
    stain_name: str,
    white: Sequence[float] = DEFAULT_WHITE,
    diagnostics: Optional[List[str]] = None,
) -> Optional[np.ndarray]:
    """
    Reduce an RGB region raster to a single scalar channel.

    Returns None (after recording a diagnostic) instead of raising when no
    channel can be produced: non-RGB input, deconvolution without a stain
    profile, or a stain name that is not in the profile.

    Args:
        raster: (H, W, 3) or (H, W, 4) region raster
        method: Extraction method
        stains: Stain profile, or None when the image has none
        stain_name: Stain to keep (deconvolution only)
        white: Reference white for the optical density sum
        diagnostics: Optional list that receives skip reasons

    Returns:
        (H, W) float32 array, or None
    """
    def _skip(message: str) -> None:
        logger.warning(message)
        if diagnostics is not None:
            diagnostics.append(message)

    rgb = _rgb_channels(raster)
    if rgb is None:
        _skip(f"Expected an RGB raster, got shape {raster.shape}")
        return None

    method = ChannelMethod(method)

    if method is ChannelMethod.OPTICAL_DENSITY_SUM:
        return optical_density_sum(rgb, white)

    if stains is None:
        _skip("Colour deconvolution needs an RGB brightfield image with stain vectors")
        return None

    stain_index = stains.index_of(stain_name)
    if stain_index is None:
        _skip(f"Could not find stain with name {stain_name!r} (available: {list(stains.names)})")
        return None

    return color_deconvolve(rgb, stains)[:, :, stain_index].copy()
