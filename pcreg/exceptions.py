"""Errors raised by the registration pipeline."""


class RegistrationError(Exception):
    """Base class for every error raised by pcreg."""


class ValidationError(RegistrationError, ValueError):
    """An input failed a precondition check before any work was done."""


class DtypeMismatch(ValidationError):
    pass


class ShapeError(ValidationError):
    pass


class DeviceMismatch(ValidationError):
    pass


class IndexNotReady(RegistrationError, RuntimeError):
    """The spatial index was queried in a mode it was not built for."""


class MissingNormalsError(RegistrationError, ValueError):
    """Point-to-plane estimation needs normals on the target cloud."""
