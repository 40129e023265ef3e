class SyncError(Exception):
    """Base class for failures raised by the sync pipeline."""


class ConnectionFailure(SyncError):
    """The remote host could not be reached or refused the session."""


class FetchFailure(SyncError):
    """Listing or downloading from an open remote session failed."""


class NoMatchingFile(SyncError):
    """No regular remote file matched the configured pattern."""


class InvalidSchedule(SyncError):
    """A cron expression or timezone was rejected before arming a timer."""


class RescheduleFailure(SyncError):
    """The scheduler refused a new trigger; the previous one was kept."""
