class DriveSyncError(RuntimeError):
    """Base class for errors raised by the reconciliation job."""


class ConfigError(DriveSyncError):
    pass


class RemoteListingError(DriveSyncError):
    """The Drive folder listing could not be fetched completely.

    Always fatal: a run never reconciles against a partial listing.
    """


class CatalogLoadError(DriveSyncError):
    """Articles or groups could not be loaded for target matching."""
