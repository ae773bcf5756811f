"""Exception types raised by Osprey."""


class OspreyError(Exception):
    """Base class for all Osprey errors."""


class ConfigError(OspreyError):
    """The configuration file could not be read or has the wrong shape."""


class TrustError(OspreyError):
    """Trust material (CA certificates) could not be loaded."""


class DeliveryError(OspreyError):
    """The remote endpoint could not be reached, even after reconnecting."""


class SourceUnavailable(OspreyError):
    """A log source could not be opened."""
