"""
Error taxonomy for the remote input relay.

Every failure is caught at the boundary where it occurs and turned into
a user-visible notification; these types only carry the category.
"""


class RelayError(Exception):
    """Base class for relay errors."""


class InvalidAddressFormat(RelayError, ValueError):
    """Manual fields or connection URL are malformed. Raised before any network attempt."""


class RelayConnectionError(RelayError, ConnectionError):
    """Transport failed to open or errored while open."""


class ConnectInProgress(RelayConnectionError):
    """A connection attempt was made while another one is live."""


class MicrophoneUnavailable(RelayError):
    """Capture device denied or missing."""


class MalformedFrame(RelayError, ValueError):
    """A received frame is not a valid relay command."""


class ScanTimeout(RelayError):
    """No QR payload was decoded before the scan deadline."""


class CameraUnavailable(RelayError):
    """The camera could not be opened or stopped delivering frames."""
