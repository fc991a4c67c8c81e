class Error(Exception):
    """Base exception for this module."""


class InvalidSignatureError(Error):
    """Exception that occurs if the magic in the metadata root does not match."""


class InvalidMetadataError(Error):
    """Exception that occurs if the metadata container can not be indexed."""


class InvalidHandleError(Error, ValueError):
    """Exception that occurs if a metadata token does not refer to a method definition."""


class LocalVariableNotFoundError(Error, IndexError):
    """Exception that occurs if a positional local variable index is out of range."""


class DecodeError(Error):
    """Base exception for custom debug information payloads that can not be decoded."""


class MalformedBlobError(DecodeError):
    """Exception that occurs if a payload violates the layout of its kind."""


class MalformedSourceLinkError(DecodeError):
    """Exception that occurs if the Source Link JSON is invalid or has an unexpected shape."""
