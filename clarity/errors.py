from __future__ import annotations


class ClarityError(RuntimeError):
    """Base class for every failure raised by the recording pipeline."""


class AlreadyActive(ClarityError):
    pass


class NotActive(ClarityError):
    pass


class StorageUnavailable(ClarityError):
    pass


class CaptureError(ClarityError):
    pass


class NoDisplay(CaptureError):
    pass


class CapturePermission(CaptureError):
    pass


class EncodeFailure(CaptureError):
    pass


class WriteFailure(CaptureError):
    pass


class AssemblyError(ClarityError):
    pass


class EncoderNotFound(AssemblyError):
    pass


class VideoEncodeFailure(AssemblyError):
    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class RemoteError(ClarityError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UploadError(RemoteError):
    pass


class RemoteProcessingFailed(RemoteError):
    pass


class PollTimeout(RemoteError):
    pass


class GenerationError(RemoteError):
    pass


class EmptyResponse(RemoteError):
    pass
