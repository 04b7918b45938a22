"""Custom exceptions for wxapkg audit."""


class WxapkgAuditError(Exception):
    """Base exception for wxapkg audit."""


class InvalidContainerFormat(WxapkgAuditError):
    """Buffer is not a plaintext wxapkg container (it may still be encrypted)."""


class CorruptEntry(InvalidContainerFormat):
    """File table contains an entry that cannot be decoded."""


class DecryptionFailure(WxapkgAuditError):
    """Encrypted envelope could not be removed."""


class BoundsViolation(WxapkgAuditError):
    """Entry data range lies outside the container buffer."""


class IOFailure(WxapkgAuditError, OSError):
    """Reading or writing package data failed."""


class NetworkFailure(WxapkgAuditError):
    """Metadata lookup could not reach the service."""


class PatternCompileError(WxapkgAuditError, ValueError):
    """A caller supplied pattern is not a valid regular expression."""


class UnsafeEntryPath(WxapkgAuditError):
    """Entry name cannot be mapped to a file below the output directory."""
