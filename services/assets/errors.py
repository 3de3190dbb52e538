class AssetTrackError(Exception):
    """Base class for every error raised by the asset services."""

    http_status = 500

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        out = {"ok": False, "error": self.message, "kind": self.__class__.__name__}
        if self.details:
            out["details"] = self.details
        return out


class ConfigurationError(AssetTrackError):
    """Backend credentials or target name are missing."""

    http_status = 503


class ConnectivityError(AssetTrackError):
    """Backend unreachable or returned a failure other than 'not found'."""

    http_status = 502


class NotFoundError(AssetTrackError):
    http_status = 404


class ValidationError(AssetTrackError):
    http_status = 400


class InvalidArgumentError(AssetTrackError):
    http_status = 400


class ExtractionError(AssetTrackError):
    """Text extraction failed or found no candidate assets."""

    http_status = 422
