__version__ = "0.1.0"

from .exceptions import (
    FileError,
    MalformedMultipartError,
    ParseError,
    SessionStoreError,
    StreamIOError,
    UnknownEncodingError,
    UploadError,
)
from .middleware import wrap_upload_progress
from .multipart import (
    Field,
    File,
    MultipartDecoder,
    MultipartParser,
    RequestContext,
    decode_multipart,
    parse_options_header,
)
from .params import accumulate_params, assoc_param
from .session import MemoryStore, ProgressReporter, SessionBridge

__all__ = (
    "Field",
    "File",
    "FileError",
    "MalformedMultipartError",
    "MemoryStore",
    "MultipartDecoder",
    "MultipartParser",
    "ParseError",
    "ProgressReporter",
    "RequestContext",
    "SessionBridge",
    "SessionStoreError",
    "StreamIOError",
    "UnknownEncodingError",
    "UploadError",
    "accumulate_params",
    "assoc_param",
    "decode_multipart",
    "parse_options_header",
    "wrap_upload_progress",
)
