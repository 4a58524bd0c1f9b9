"""Robust loss functions for outlier handling in ICP."""

import numpy as np


def huber_loss_weights(residuals, delta=1.0):
    """
    Compute Huber loss weights for robust estimation.

    Good for handling 10-20% outliers. Transitions from quadratic to linear
    penalty at the delta threshold.

    Args:
        residuals: Array of distances/errors
        delta: Threshold for switching from quadratic to linear

    Returns:
        Array of weights (0-1) for each correspondence
    """
    weights = np.ones_like(residuals, dtype=float)
    outlier_mask = residuals > delta
    weights[outlier_mask] = delta / residuals[outlier_mask]
    return weights


def tukey_loss_weights(residuals, c=4.685):
    """
    Compute Tukey biweight loss weights for robust estimation.

    Very robust to severe outliers (handles 30-50% outliers). Completely
    rejects correspondences beyond threshold c.

    Args:
        residuals: Array of distances/errors
        c: Tuning constant (4.685 for 95% efficiency)

    Returns:
        Array of weights (0-1) for each correspondence
    """
    normalized = residuals / c
    weights = np.zeros_like(residuals, dtype=float)
    inlier_mask = normalized <= 1.0
    weights[inlier_mask] = (1 - normalized[inlier_mask]**2)**2
    return weights


def cauchy_loss_weights(residuals, c=1.0):
    """Cauchy weights: never zero, decreasing as 1 / (1 + (r/c)^2)."""
    return 1.0 / (1.0 + (residuals / c) ** 2)


LOSS_FUNCTIONS = {
    'huber': huber_loss_weights,
    'tukey': tukey_loss_weights,
    'cauchy': cauchy_loss_weights,
}


def get_loss_function(loss_fn):
    """
    Get a weight function by name.

    Args:
        loss_fn: One of 'huber', 'tukey', 'cauchy'

    Returns:
        Function mapping (residuals, tuning) to weights
    """
    try:
        return LOSS_FUNCTIONS[loss_fn]
    except KeyError:
        raise ValueError(f"Unknown loss function: {loss_fn}") from None
