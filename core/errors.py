class ClientError(Exception):
    """Base class for failures talking to the ShutterPipe server."""

class ApiError(ClientError):
    """An HTTP call was rejected (non-2xx) or never reached the server (status None)."""

    def __init__(self, message, status=None, field=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.field = field

    def to_dict(self):
        data = {"message": self.message}
        if self.field:
            data["field"] = self.field
        return data

class ChannelError(ClientError):
    """The progress channel failed to open or dropped before it was usable."""
