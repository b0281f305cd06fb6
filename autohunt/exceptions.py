class AutoHuntError(Exception):
    """Base class for engine errors."""

class ConfigurationError(AutoHuntError):
    """Scoring weights or thresholds are invalid. Fatal for a scan run."""

class SourceFetchError(AutoHuntError):
    """The fingerprint store or listing source could not be read."""

class PersistenceError(AutoHuntError):
    """A ledger write failed after its retry."""
