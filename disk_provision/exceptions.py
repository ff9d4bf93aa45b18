"""Exceptions raised while provisioning the data disk.

Every error is fatal for the run and maps to exit code 1.
"""


class ProvisionError(Exception):
    """Base exception for disk provisioning"""
    exit_code = 1


class UsageError(ProvisionError):
    """Raised for unknown or malformed command-line arguments"""
    pass


class PrivilegeError(ProvisionError):
    """Raised when a mutating run is started without root"""
    pass


class ConflictError(ProvisionError):
    """Raised when proceeding could overwrite an unrelated mount or filesystem"""
    pass


class ResolutionError(ProvisionError):
    """Raised when the device or its UUID cannot be read"""
    pass


class MountError(ProvisionError):
    """Raised when the mount point cannot be created or both mount attempts failed"""
    pass


class FormatError(ProvisionError):
    """Raised when filesystem creation fails"""
    pass
