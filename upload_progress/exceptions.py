class UploadError(ValueError):
    """Base error class for the upload parsing middleware."""


class ParseError(UploadError):
    """This exception (or a subclass) is raised when there is an error while
    parsing something.
    """

    #: This is the offset in the input data chunk (*NOT* the overall stream) in
    #: which the parse error occurred.  It will be -1 if not specified.
    offset = -1


class MalformedMultipartError(ParseError):
    """Raised when a request body is not valid multipart/form-data: the
    boundary is missing or wrong, a part header cannot be parsed, or the
    stream ends before the closing boundary.
    """


class UnknownEncodingError(UploadError):
    """Raised when the character encoding for field values is unknown."""


class SessionStoreError(UploadError):
    """Raised by session store implementations.  It is never caught by this
    package, so it reaches whoever called the middleware as-is.
    """


class StreamIOError(UploadError, OSError):
    """Reading the request body failed.  The underlying error is available as
    ``__cause__``.
    """


class FileError(UploadError, OSError):
    """Exception class for problems with the File class."""
