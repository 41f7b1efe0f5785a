"""General utility functions."""

import logging
import time
from functools import wraps

import numpy as np

logger = logging.getLogger(__name__)


def setup_logging(name, level=logging.INFO):
    """
    Configure a logger with a single stream handler.

    Calling it twice for the same name does not stack handlers.
    """
    log = logging.getLogger(name)
    log.setLevel(level)

    if not log.hasHandlers():
        handler = logging.StreamHandler()
        handler.setLevel(level)
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        log.addHandler(handler)

    return log


def time_function(func):
    """
    Decorator to time function execution.
    For recursive functions, only times the top-level call.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not hasattr(wrapper, '_in_call'):
            wrapper._in_call = False

        if not wrapper._in_call:
            wrapper._in_call = True
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                elapsed = time.time() - start_time
                logger.debug("%s took %.6f seconds", func.__name__, elapsed)
                return result
            finally:
                wrapper._in_call = False
        else:
            return func(*args, **kwargs)

    return wrapper


def apply_transformation(points, transformation):
    """Apply a 4x4 homogeneous transform to an (N, 3) array, keeping its dtype."""
    R = transformation[:3, :3]
    t = transformation[:3, 3]
    return (points @ R.T + t).astype(points.dtype, copy=False)


def rotate_vectors(vectors, transformation):
    """Rotate direction vectors (normals) by the rotation block of a transform."""
    R = transformation[:3, :3]
    return (vectors @ R.T).astype(vectors.dtype, copy=False)


def identity_transform(dtype=np.float32):
    return np.eye(4, dtype=dtype)
