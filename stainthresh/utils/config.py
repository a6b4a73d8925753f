"""
Run configuration for the stain-threshold pipeline.

All options are resolved and validated before a run starts. The channel
extraction method is a closed enumeration, so a typo fails at construction
rather than half-way through a slide.

Usage:
    from stainthresh.utils.config import ThresholdParams, ChannelMethod, load_config

    params = ThresholdParams(roi_class="Tumor", downsample=4.0)
    params = load_config("/path/to/experiment/threshold_config.json")

    # Host scripts that still pass the string-keyed map
    params = from_legacy_params({"Roi": "Region*", "ChannelExtrMethod": "Deconvolution", ...})
"""

import copy
import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stainthresh.utils.json_utils import atomic_json_dump
from stainthresh.utils.logging import get_logger

logger = get_logger(__name__)


class ChannelMethod(str, Enum):
    """How a region's RGB raster is reduced to one scalar channel."""

    OPTICAL_DENSITY_SUM = "OpticalDensitySum"
    DECONVOLUTION = "Deconvolution"


DEFAULT_PARAMS: Dict[str, Any] = {
    "roi_class": "Region*",
    "channel_method": ChannelMethod.OPTICAL_DENSITY_SUM,
    "stain_name": "OpticalDensitySum",
    "target_class": "Vessels",
    "min_fragment_um2": 1000.0,
    "max_hole_um2": 1000.0,
    "downsample": 3.0,
    "gaussian_sigma_um": 15.0,
    "n_workers": 1,
}

# String keys used by host scripts -> ThresholdParams fields
LEGACY_KEYS: Dict[str, str] = {
    "Roi": "roi_class",
    "ChannelExtrMethod": "channel_method",
    "stainName": "stain_name",
    "setPathClass": "target_class",
    "MinFragment": "min_fragment_um2",
    "MaxHole": "max_hole_um2",
    "Downsample": "downsample",
    "gaussianSigma": "gaussian_sigma_um",
}


class ThresholdParams(BaseModel):
    """
    Validated, immutable configuration for one pipeline run.

    Attributes:
        roi_class: Classification of top-level annotations to process.
            None processes the whole image as a single region.
        channel_method: Scalar channel extraction method.
        stain_name: Stain to keep after deconvolution; also used to label
            the intensity measurements.
        target_class: Classification applied to the produced annotations.
        min_fragment_um2: Fragments smaller than this (µm²) are discarded.
        max_hole_um2: Holes smaller than this (µm²) are filled.
        downsample: Processing resolution relative to full resolution (>= 1).
        gaussian_sigma_um: Gaussian smoothing sigma in µm (0 disables).
        n_workers: Regions processed concurrently (1 = sequential).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    roi_class: Optional[str] = DEFAULT_PARAMS["roi_class"]
    channel_method: ChannelMethod = DEFAULT_PARAMS["channel_method"]
    stain_name: str = Field(DEFAULT_PARAMS["stain_name"], min_length=1)
    target_class: str = Field(DEFAULT_PARAMS["target_class"], min_length=1)
    min_fragment_um2: float = Field(DEFAULT_PARAMS["min_fragment_um2"], ge=0.0)
    max_hole_um2: float = Field(DEFAULT_PARAMS["max_hole_um2"], ge=0.0)
    downsample: float = Field(DEFAULT_PARAMS["downsample"], ge=1.0)
    gaussian_sigma_um: float = Field(DEFAULT_PARAMS["gaussian_sigma_um"], ge=0.0)
    n_workers: int = Field(DEFAULT_PARAMS["n_workers"], ge=1)

    @field_validator("roi_class", mode="before")
    @classmethod
    def blank_roi_means_whole_image(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("channel_method", mode="before")
    @classmethod
    def parse_channel_method(cls, v: Any) -> Any:
        """Accept enum values and names case-insensitively."""
        if isinstance(v, str) and not isinstance(v, ChannelMethod):
            key = v.strip().lower().replace("_", "")
            for method in ChannelMethod:
                if key in (method.value.lower(), method.name.lower().replace("_", "")):
                    return method
        return v

    def refine_plugin_params(self) -> Dict[str, float]:
        """Named parameters for the host's whole-hierarchy refine pass."""
        return {
            "minFragmentSizeMicrons": self.min_fragment_um2,
            "maxHoleSizeMicrons": self.max_hole_um2,
        }


def from_legacy_params(params: Dict[str, Any]) -> ThresholdParams:
    """
    Build ThresholdParams from the string-keyed map used by host scripts.

    A missing "Roi" key means "process the whole image". Unknown keys are
    rejected.

    Args:
        params: Dict keyed by "Roi", "ChannelExtrMethod", "stainName", ...

    Returns:
        Validated ThresholdParams
    """
    unknown = set(params) - set(LEGACY_KEYS)
    if unknown:
        raise ValueError(f"Unknown parameter keys: {sorted(unknown)}")

    fields = {LEGACY_KEYS[k]: v for k, v in params.items()}
    fields.setdefault("roi_class", None)
    return ThresholdParams(**fields)


def load_config(
    config_path: Union[str, Path],
    **overrides: Any,
) -> ThresholdParams:
    """
    Load run configuration from a JSON file, merged over the defaults.

    Files written with the legacy string keys are accepted as well.
    An unreadable file falls back to the defaults with a warning; a file
    with invalid values raises pydantic.ValidationError.

    Args:
        config_path: Path to a JSON config file
        **overrides: Field values applied on top of the file

    Returns:
        Validated ThresholdParams
    """
    config_path = Path(config_path)
    file_config: Dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                file_config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Could not load config from {config_path}: {e}")
            file_config = {}
    else:
        logger.info(f"No config at {config_path}, using defaults")

    if file_config and set(file_config) <= set(LEGACY_KEYS):
        base = from_legacy_params(file_config).model_dump()
    else:
        base = copy.deepcopy(DEFAULT_PARAMS)
        base.update(file_config)

    base.update(overrides)
    return ThresholdParams(**base)


def save_config(params: ThresholdParams, config_path: Union[str, Path]) -> Path:
    """
    Save run configuration as JSON (field names, enum values).

    Args:
        params: Configuration to save
        config_path: Target file path

    Returns:
        Path to the saved config file
    """
    return atomic_json_dump(params.model_dump(mode="json"), config_path)
