"""JSON utilities: numpy-safe encoding and atomic writes for configs and exports."""

import json
import math
import os
import tempfile
from enum import Enum
from pathlib import Path

import numpy as np


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy scalars/arrays and enums.

    Usage::

        json.dump(data, f, cls=NumpyEncoder)
    """

    def default(self, obj):
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            v = float(obj)
            if math.isnan(v) or math.isinf(v):
                return None
            return v
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def sanitize_for_json(obj):
    """Recursively replace NaN/inf with None and numpy types with Python types.

    ``float('nan')`` is serializable by the stdlib encoder (as the non-standard
    ``NaN`` token), so the encoder hook alone does not catch it.
    """
    if isinstance(obj, dict):
        return {k: sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_json(v) for v in obj]
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, (float, np.floating)):
        v = float(obj)
        return None if (math.isnan(v) or math.isinf(v)) else v
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.ndarray):
        return sanitize_for_json(obj.tolist())
    return obj


def atomic_json_dump(data, filepath, cls=NumpyEncoder, sanitize=True, indent=2):
    """Write JSON via a temp file + os.replace() so the target is never partial.

    Args:
        data: Python object to serialize.
        filepath: Target path (str or Path).
        cls: JSON encoder class (default: NumpyEncoder).
        sanitize: Run sanitize_for_json() first (default: True).
        indent: Indentation passed to json.dump.

    Returns:
        Path of the written file.
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    if sanitize:
        data = sanitize_for_json(data)

    fd, tmp_path = tempfile.mkstemp(dir=filepath.parent, suffix='.tmp')
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, cls=cls, indent=indent)
        os.replace(tmp_path, filepath)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return filepath
