"""Robust loss weights for down-weighting outlier correspondences."""

from functools import partial

import numpy as np


def huber_loss_weights(residuals, delta=1.0):
    """
    Huber weights: 1 inside delta, delta / r beyond it.

    Good for handling 10-20% outliers. Transitions from quadratic to linear
    penalty at the delta threshold.

    Args:
        residuals: Array of distances/errors
        delta: Threshold for switching from quadratic to linear

    Returns:
        Array of weights (0-1) for each correspondence
    """
    residuals = np.asarray(residuals, dtype=np.float64)
    weights = np.ones_like(residuals)
    outlier_mask = residuals > delta
    weights[outlier_mask] = delta / residuals[outlier_mask]
    return weights


def tukey_loss_weights(residuals, c=4.685):
    """
    Tukey biweight weights; correspondences beyond c get zero weight.

    Args:
        residuals: Array of distances/errors
        c: Tuning constant (4.685 for 95% efficiency)

    Returns:
        Array of weights (0-1) for each correspondence
    """
    residuals = np.asarray(residuals, dtype=np.float64)
    normalized = residuals / c
    weights = np.zeros_like(residuals)
    inlier_mask = normalized <= 1.0
    weights[inlier_mask] = (1 - normalized[inlier_mask]**2)**2
    return weights


def percentile_filter_weights(residuals, percentile=90):
    """Binary weights keeping the residuals at or below the given percentile."""
    residuals = np.asarray(residuals, dtype=np.float64)
    if residuals.size == 0:
        return residuals
    threshold = np.percentile(residuals, percentile)
    return (residuals <= threshold).astype(np.float64)


LOSS_FUNCTIONS = {
    'huber': (huber_loss_weights, 'delta', 1.0),
    'tukey': (tukey_loss_weights, 'c', 4.685),
    'percentile': (percentile_filter_weights, 'percentile', 90),
}


def get_loss_function(loss_fn='none', loss_params=None):
    """
    Look up a weighting function by name.

    Args:
        loss_fn: One of 'none', 'huber', 'tukey', 'percentile'
        loss_params: Optional dict overriding the function's tuning parameter

    Returns:
        Callable mapping residuals to weights, or None for 'none'

    Raises:
        ValueError: unknown loss name
    """
    if loss_fn in (None, 'none'):
        return None
    if loss_fn not in LOSS_FUNCTIONS:
        raise ValueError(f"Unknown loss function: {loss_fn!r}; "
                         f"expected one of {['none', *LOSS_FUNCTIONS]}")

    func, param_name, default = LOSS_FUNCTIONS[loss_fn]
    loss_params = loss_params or {}
    return partial(func, **{param_name: loss_params.get(param_name, default)})
