"""Precondition checks shared by the registration entry points."""

import numpy as np

from .exceptions import DeviceMismatch, DtypeMismatch, ShapeError
from .point_cloud import DEFAULT_DEVICE

REGISTRATION_DTYPE = np.dtype(np.float32)


def device_of(array):
    """numpy arrays always live on the host."""
    return DEFAULT_DEVICE


def check_points(cloud, name):
    points = cloud.points
    if points.dtype != REGISTRATION_DTYPE:
        raise DtypeMismatch(
            f"{name} points dtype {points.dtype} != expected {REGISTRATION_DTYPE}.")
    if points.ndim != 2 or points.shape[1] != 3:
        raise ShapeError(f"{name} points shape {points.shape} != expected (N, 3).")


def check_transformation(transformation, device, name="Transformation"):
    transformation = np.asarray(transformation)
    if transformation.shape != (4, 4):
        raise ShapeError(f"{name} shape {transformation.shape} != expected (4, 4).")
    if transformation.dtype != REGISTRATION_DTYPE:
        raise DtypeMismatch(
            f"{name} dtype {transformation.dtype} != expected {REGISTRATION_DTYPE}.")
    if device_of(transformation) != device:
        raise DeviceMismatch(
            f"{name} device {device_of(transformation)} != source point cloud device {device}.")


def check_registration_inputs(source, target, transformation):
    """
    Validate a (source, target, transformation) triple.

    Raises:
        DtypeMismatch: points or transformation are not float32
        ShapeError: points are not (N, 3) or the transformation is not 4x4
        DeviceMismatch: target or transformation are not on the source device
    """
    check_points(source, "Source")
    check_points(target, "Target")
    if target.device != source.device:
        raise DeviceMismatch(
            f"Target point cloud device {target.device} != "
            f"source point cloud device {source.device}.")
    check_transformation(transformation, source.device)
