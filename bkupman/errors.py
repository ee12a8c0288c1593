class BkupmanError(Exception):
    """Base class for bkupman-specific errors."""


# Per-unit errors (isolated to one file or tag)
class FilesystemError(BkupmanError):
    pass


class IntegrityError(BkupmanError):
    pass


class InvalidFilenameError(BkupmanError):
    pass


class MissingKeyError(BkupmanError):
    pass


# Decrypt path
class AuthenticationError(BkupmanError):
    pass


# Run-level errors
class LockContentionError(BkupmanError):
    pass


class KeyMismatchError(BkupmanError):
    pass


class LedgerFormatError(BkupmanError):
    pass


class RepositoryNotInitializedError(BkupmanError):
    pass


class DirectoryNotEmptyError(BkupmanError):
    pass
