"""Exceptions raised by the extractor and its collaborators."""


class DicomGatewayError(RuntimeError):
    """Base class for every failure the gateway surfaces to its host."""


class MalformedInputError(DicomGatewayError):
    """Raised when a byte stream cannot be parsed as DICOM at all."""

    def __init__(self, source_key=None, message=None):
        base = message or "Byte stream is not a readable DICOM file"
        if source_key is not None:
            base = f"{base}: {source_key}"
        super().__init__(base)
        self.source_key = source_key


class NotFoundError(DicomGatewayError):
    """Raised when a source object does not exist in the object store."""

    def __init__(self, key, bucket=None):
        location = f"{bucket}/{key}" if bucket else key
        super().__init__(f"Object not found: {location}")
        self.key = key
        self.bucket = bucket


class SinkUnavailableError(DicomGatewayError):
    """Raised when the relational store, queue or import service cannot be reached."""

    def __init__(self, sink, message=None):
        super().__init__(f"{sink} unavailable: {message}" if message else f"{sink} unavailable")
        self.sink = sink
