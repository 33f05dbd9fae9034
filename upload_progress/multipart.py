from __future__ import annotations

import logging
import os
import shutil
import sys
import tempfile
from email.message import Message
from enum import IntEnum
from io import BufferedRandom, BufferedReader, BytesIO
from typing import TYPE_CHECKING, cast

from .exceptions import FileError, MalformedMultipartError, StreamIOError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping
    from typing import Any, Literal, Protocol, TypeAlias, TypedDict

    class SupportsRead(Protocol):
        def read(self, __n: int) -> bytes: ...

    class MultipartCallbacks(TypedDict, total=False):
        on_part_begin: Callable[[], None]
        on_part_data: Callable[[bytes, int, int], None]
        on_part_end: Callable[[], None]
        on_header_begin: Callable[[], None]
        on_header_field: Callable[[bytes, int, int], None]
        on_header_value: Callable[[bytes, int, int], None]
        on_header_end: Callable[[], None]
        on_headers_finished: Callable[[], None]
        on_end: Callable[[], None]

    class FileConfig(TypedDict, total=False):
        UPLOAD_DIR: str | None
        UPLOAD_DELETE_TMP: bool
        UPLOAD_KEEP_FILENAME: bool
        UPLOAD_KEEP_EXTENSIONS: bool
        MAX_MEMORY_FILE_SIZE: int | float

    class _PartProtocol(Protocol):
        def write(self, data: bytes) -> int: ...
        def finalize(self) -> None: ...
        def close(self) -> None: ...

    class FieldProtocol(_PartProtocol, Protocol):
        def __init__(self, name: str, encoding: str) -> None: ...

    class FileProtocol(_PartProtocol, Protocol):
        def __init__(
            self, file_name: str, field_name: str, content_type: str | None, config: FileConfig
        ) -> None: ...

    #: Called with (bytes_read, content_length, items) while a body is decoded.
    ProgressCallback = Callable[[int, int, int], None]

    CallbackName: TypeAlias = Literal[
        "part_begin",
        "part_data",
        "part_end",
        "header_begin",
        "header_field",
        "header_value",
        "header_end",
        "headers_finished",
        "end",
    ]


class MultipartState(IntEnum):
    """States of the multipart/form-data parser."""

    START = 0
    START_BOUNDARY = 1
    HEADER_FIELD_START = 2
    HEADER_FIELD = 3
    HEADER_VALUE_START = 4
    HEADER_VALUE = 5
    HEADER_VALUE_ALMOST_DONE = 6
    HEADERS_ALMOST_DONE = 7
    PART_DATA_START = 8
    PART_DATA = 9
    END_BOUNDARY = 10
    END = 11


# Flags for the multipart parser.
FLAG_PART_BOUNDARY = 1
FLAG_LAST_BOUNDARY = 2

# Get constants.  Iterating over a bytes object gives integers, so we compare
# against these.
CR = b"\r"[0]
LF = b"\n"[0]
COLON = b":"[0]
SPACE = b" "[0]
HYPHEN = b"-"[0]

# fmt: off
# Header field names are HTTP tokens (RFC 7230, section 3.2.6).
TOKEN_CHARS_SET = frozenset(
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    b"abcdefghijklmnopqrstuvwxyz"
    b"0123456789"
    b"!#$%&'*+-.^_`|~")
# fmt: on

MULTIPART_FORM_DATA = "multipart/form-data"


def parse_options_header(value: str | bytes | None) -> tuple[bytes, dict[bytes, bytes]]:
    """Parses a Content-Type or Content-Disposition header into a value in
    the form (content_type, {parameters}).

    Parameter values are returned as latin-1 encoded bytes, which gives back
    the raw header bytes, so the caller can decode them with whatever
    charset the request declares.
    """
    if not value:
        return (b"", {})

    # The email module works on text, so decode the raw header first.
    if isinstance(value, bytes):
        value = value.decode("latin-1")

    if ";" not in value:
        return (value.lower().strip().encode("latin-1"), {})

    # PEP 594 points at email.message.Message for parsing these headers.
    message = Message()
    message["content-type"] = value
    params = message.get_params()
    assert params, "At least the content type value should be present"
    ctype = params.pop(0)[0].lower().encode("latin-1")

    options: dict[bytes, bytes] = {}
    for key, param in params:
        # RFC 2231 values come back as (charset, language, value).
        if isinstance(param, tuple):
            param = param[-1]

        # IE6 sends the full path of the file, so we strip everything up to
        # the last backslash.
        if key == "filename" and (param[1:3] == ":\\" or param[:2] == "\\\\"):
            param = param.split("\\")[-1]

        options[key.encode("latin-1")] = param.encode("latin-1")
    return ctype, options


class Field:
    """A Field object represents a (parsed) form field.  It accumulates the
    raw bytes of a part and decodes them with the request's encoding when
    the value is requested.

    :param name: the name of the form field
    :param encoding: the codec used to turn the field's bytes into text
    """

    def __init__(self, name: str, encoding: str = "utf-8") -> None:
        self._name = name
        self._encoding = encoding
        self._value: list[bytes] = []

        # We cache the joined value, since this field may be read many times.
        self._cache: Any = _missing

    @classmethod
    def from_value(cls, name: str, value: bytes, encoding: str = "utf-8") -> Field:
        """Create an instance of a :class:`Field`, and set the corresponding
        value.
        """
        f = cls(name, encoding)
        f.write(value)
        f.finalize()
        return f

    def write(self, data: bytes) -> int:
        return self.on_data(data)

    def on_data(self, data: bytes) -> int:
        self._value.append(data)
        self._cache = _missing
        return len(data)

    def on_end(self) -> None:
        if self._cache is _missing:
            self._cache = self._decode()

    def finalize(self) -> None:
        self.on_end()

    def close(self) -> None:
        """Drop the raw chunks, keeping only the decoded value."""
        if self._cache is _missing:
            self._cache = self._decode()
        self._value = []

    def _decode(self) -> str:
        # Browsers do not always honour the form's charset, so undecodable
        # bytes are replaced rather than raised.
        return b"".join(self._value).decode(self._encoding, "replace")

    @property
    def field_name(self) -> str:
        """The name of the form field."""
        return self._name

    @property
    def encoding(self) -> str:
        return self._encoding

    @property
    def value(self) -> str:
        """The decoded value of the form field.  An empty part gives ``""``."""
        if self._cache is _missing:
            self._cache = self._decode()
        return cast(str, self._cache)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Field):
            return self.field_name == other.field_name and self.value == other.value
        return NotImplemented

    def __repr__(self) -> str:
        if len(self.value) > 97:
            # We get the repr, and then insert three dots before the final
            # quote.
            v = repr(self.value[:97])[:-1] + "...'"
        else:
            v = repr(self.value)
        return f"{self.__class__.__name__}(field_name={self.field_name!r}, value={v})"


class File:
    """This class represents an uploaded file.  It handles writing file data
    to either an in-memory file or a temporary file on-disk, once the
    ``MAX_MEMORY_FILE_SIZE`` threshold is passed.

    A threshold of ``-1`` means the file always ends up on disk, even when
    it is empty; ``float("inf")`` keeps it in memory.  The on-disk file is
    not removed when this object goes away unless ``UPLOAD_DELETE_TMP`` is
    set: whoever receives the file owns it.

    :param file_name: the file name given in the upload request
    :param field_name: the form field this file was uploaded under
    :param content_type: the part's Content-Type header, if any
    :param config: the storage configuration, see :class:`FileConfig`
    """

    def __init__(
        self,
        file_name: str | None,
        field_name: str | None = None,
        content_type: str | None = None,
        config: FileConfig = {},
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self._config = config
        self._in_memory = True
        self._bytes_written = 0
        self._fileobj: BytesIO | BufferedRandom | BufferedReader = BytesIO()

        self._field_name = field_name
        self._file_name = file_name
        self._content_type = content_type

        # Depending on the config we might not save under the given name, so
        # this stays None until we actually have a file on disk.
        self._actual_file_name: str | None = None

        # Split the extension from the filename.
        if file_name is not None:
            base, ext = os.path.splitext(os.path.basename(file_name))
            self._file_base = base
            self._ext = ext
        else:
            self._file_base = ""
            self._ext = ""

    @property
    def field_name(self) -> str | None:
        """The form field associated with this file."""
        return self._field_name

    @property
    def file_name(self) -> str | None:
        """The file name given in the upload request."""
        return self._file_name

    @property
    def content_type(self) -> str | None:
        """The Content-Type sent along with this part, or None."""
        return self._content_type

    @property
    def actual_file_name(self) -> str | None:
        """The path this file is saved at.  Will return None if it's not
        currently saved on disk.
        """
        return self._actual_file_name

    @property
    def file_object(self) -> BytesIO | BufferedRandom | BufferedReader:
        """The file object that we're currently writing to."""
        return self._fileobj

    @property
    def size(self) -> int:
        """The total number of bytes written to this file."""
        return self._bytes_written

    @property
    def in_memory(self) -> bool:
        """Whether or not this file object is currently stored in-memory or
        on-disk.
        """
        return self._in_memory

    @property
    def storage_ref(self) -> str | BytesIO | BufferedRandom | BufferedReader:
        """Where the file's bytes live: the path on disk once spilled,
        otherwise the in-memory buffer.
        """
        if self._in_memory:
            return self._fileobj
        assert self._actual_file_name is not None
        return self._actual_file_name

    def flush_to_disk(self) -> None:
        """If the file is already on-disk, do nothing.  Otherwise, copy from
        the in-memory buffer to a disk file, and then reassign our internal
        file object to this new disk file.
        """
        if not self._in_memory:
            self.logger.warning("Trying to flush to disk when we're not in memory")
            return

        self._fileobj.seek(0)
        new_file = self._get_disk_file()
        shutil.copyfileobj(self._fileobj, new_file)
        new_file.seek(self._bytes_written)

        old_fileobj = self._fileobj
        self._fileobj = new_file
        self._in_memory = False
        old_fileobj.close()

    def _get_disk_file(self) -> BufferedRandom:
        """Open the on-disk file this upload is spilled into."""
        self.logger.info("Opening a file on disk")

        file_dir = self._config.get("UPLOAD_DIR")
        keep_filename = self._config.get("UPLOAD_KEEP_FILENAME", False)
        keep_extensions = self._config.get("UPLOAD_KEEP_EXTENSIONS", False)
        delete_tmp = self._config.get("UPLOAD_DELETE_TMP", False)

        if file_dir is not None and keep_filename and self._file_base:
            self.logger.info("Saving with filename in: %r", file_dir)

            # Only the base name is used, so a crafted name can't leave file_dir.
            fname = self._file_base + self._ext if keep_extensions else self._file_base
            path = os.path.join(file_dir, fname)
            try:
                self.logger.info("Opening file: %r", path)
                tmp_file = cast(BufferedRandom, open(path, "w+b"))
            except OSError:
                self.logger.exception("Error opening temporary file")
                raise FileError("Error opening temporary file: %r" % path)
        else:
            suffix = self._ext if keep_extensions and self._ext else None
            self.logger.info(
                "Creating a temporary file with options: %r",
                {"suffix": suffix, "delete": delete_tmp, "dir": file_dir},
            )
            try:
                tmp_file = cast(
                    BufferedRandom, tempfile.NamedTemporaryFile(suffix=suffix, delete=delete_tmp, dir=file_dir)
                )
            except OSError:
                self.logger.exception("Error creating named temporary file")
                raise FileError("Error creating named temporary file")

            path = tmp_file.name
            if isinstance(path, bytes):  # pragma: no cover
                path = path.decode(sys.getfilesystemencoding())

        self._actual_file_name = os.path.abspath(path)
        return tmp_file

    def _over_threshold(self) -> bool:
        threshold = self._config.get("MAX_MEMORY_FILE_SIZE")
        return threshold is not None and self._bytes_written > threshold

    def write(self, data: bytes) -> int:
        return self.on_data(data)

    def on_data(self, data: bytes) -> int:
        """Write some data to the current file, spilling to disk once the
        memory threshold has been passed.
        """
        bwritten = self._fileobj.write(data)

        # If the bytes written isn't the same as the length, just return.
        if bwritten != len(data):
            self.logger.warning("bwritten != len(data) (%d != %d)", bwritten, len(data))
            return bwritten

        self._bytes_written += bwritten

        if self._in_memory and self._over_threshold():
            self.logger.info("Flushing to disk")
            self.flush_to_disk()

        return bwritten

    def on_end(self) -> None:
        # Empty uploads never hit on_data, so a "-1" threshold is enforced here.
        if self._in_memory and self._over_threshold():
            self.flush_to_disk()

        self._fileobj.flush()

        # A temporary file created with UPLOAD_DELETE_TMP disappears once its
        # handle is closed, so only a kept file can be reopened.
        if not self._in_memory and not self._config.get("UPLOAD_DELETE_TMP", False):
            self._reopen_read_only()

        self._fileobj.seek(0)

    def _reopen_read_only(self) -> None:
        """Swap the writable handle on the spilled file for a read-only one."""
        assert self._actual_file_name is not None
        try:
            new_file = open(self._actual_file_name, "rb")
        except OSError:
            self.logger.exception("Error reopening spilled file")
            raise FileError("Error reopening spilled file: %r" % self._actual_file_name)

        old_fileobj = self._fileobj
        self._fileobj = new_file
        old_fileobj.close()

    def finalize(self) -> None:
        """Finalize the form file.  This will flush the underlying file and
        rewind it, so the owner can read it from the start.  A file spilled to
        disk is left open read-only; the owner should :meth:`close` it.
        """
        self.on_end()

    def close(self) -> None:
        """Close the underlying file object.  A spilled file stays on disk."""
        self._fileobj.close()

    def delete(self) -> None:
        """Close this file and remove any spilled copy from disk."""
        self.close()
        if self._actual_file_name is not None and os.path.exists(self._actual_file_name):
            self.logger.info("Removing spilled file: %r", self._actual_file_name)
            os.remove(self._actual_file_name)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(file_name={self.file_name!r}, field_name={self.field_name!r}, "
            f"content_type={self.content_type!r}, size={self.size})"
        )


class MultipartParser:
    """This class is a streaming multipart/form-data parser.  Data is fed in
    with :meth:`write`, split anywhere, and the parser reports what it finds
    through callbacks.

    .. list-table::
       :widths: 15 10 30
       :header-rows: 1

       * - Callback Name
         - Parameters
         - Description
       * - on_part_begin
         - None
         - Called when a new part of the multipart message is encountered.
       * - on_part_data
         - data, start, end
         - Called when a portion of a part's data is encountered.
       * - on_part_end
         - None
         - Called when the end of a part is reached.
       * - on_header_begin
         - None
         - Called when we've found a new header in a part of a multipart
           message
       * - on_header_field
         - data, start, end
         - Called each time an additional portion of a header is read (i.e.
           the part of the header that is before the colon; the "Foo" in
           "Foo: Bar").
       * - on_header_value
         - data, start, end
         - Called when we get data for a header.
       * - on_header_end
         - None
         - Called when the current header is finished - i.e. we've reached
           the newline at the end of the header.
       * - on_headers_finished
         - None
         - Called when all headers are finished, and before the part data
           starts.
       * - on_end
         - None
         - Called when the closing boundary has been read.

    :param boundary: The multipart boundary.  This is required, and must
                     match what is given in the HTTP request - usually in the
                     Content-Type header.
    :param callbacks: A dictionary of callbacks.  See the documentation for
                      :class:`MultipartParser`.
    """

    def __init__(self, boundary: bytes | str, callbacks: MultipartCallbacks = {}) -> None:
        self.logger = logging.getLogger(__name__)
        self.callbacks = callbacks
        self.state = MultipartState.START
        self.flags = 0
        self.index = 2

        # Positions where a piece of header or part data started.  A negative
        # value means the data started in a previous chunk and is still held
        # in the lookbehind (i.e. the partially matched boundary).
        self.marks: dict[str, int] = {}

        if isinstance(boundary, str):
            boundary = boundary.encode("latin-1")
        self.boundary = b"\r\n--" + boundary

    def callback(
        self, name: CallbackName, data: bytes | None = None, start: int | None = None, end: int | None = None
    ) -> None:
        func = cast("Callable[..., Any] | None", self.callbacks.get("on_" + name))
        if func is None:
            return
        if data is not None:
            # Don't do anything if we have start == end.
            if start is not None and start == end:
                return
            self.logger.debug("Calling on_%s with data[%d:%d]", name, start, end)
            func(data, start, end)
        else:
            self.logger.debug("Calling on_%s with no data", name)
            func()

    def _fail(self, msg: str, offset: int) -> MalformedMultipartError:
        self.logger.warning(msg)
        e = MalformedMultipartError(msg)
        e.offset = offset
        return e

    def write(self, data: bytes) -> int:
        """Write some data to the parser, which will perform size verification,
        parse into either headers or the body, and call the appropriate
        callbacks.

        :param data: a bytestring
        :return: the number of bytes processed
        """
        boundary = self.boundary
        boundary_length = len(boundary)
        length = len(data)
        state = self.state
        index = self.index
        flags = self.flags
        marks = self.marks

        i = 0

        def data_callback(name: CallbackName, end_i: int, remaining: bool = False) -> None:
            marked_index = marks.get(name)
            if marked_index is None:
                return

            if end_i <= marked_index:
                # Nothing to emit; the data so far is a boundary candidate.
                pass
            elif marked_index >= 0:
                self.callback(name, data, marked_index, end_i)
            else:
                # The data began in an earlier chunk with bytes that looked
                # like the boundary; replay them first.
                lookbehind_len = -marked_index
                if lookbehind_len <= boundary_length:
                    self.callback(name, boundary, 0, lookbehind_len)
                elif self.flags & FLAG_PART_BOUNDARY:
                    self.callback(name, boundary + b"\r\n", 0, lookbehind_len)
                elif self.flags & FLAG_LAST_BOUNDARY:
                    self.callback(name, boundary + b"--\r\n", 0, lookbehind_len)
                else:  # pragma: no cover (error case)
                    self.logger.warning("Look-back buffer error")

                if end_i > 0:
                    self.callback(name, data, 0, end_i)

            if remaining:
                marks[name] = end_i - length
            else:
                marks.pop(name, None)

        while i < length:
            c = data[i]

            if state == MultipartState.START:
                # Everything before the first boundary is preamble and is
                # dropped.  A boundary at the very start of the body has no
                # leading CRLF; this is accounted for by starting at index 2.
                if boundary[index] == c:
                    index += 1
                elif c == CR:
                    index = 1
                else:
                    index = 0

                if index == boundary_length:
                    index = boundary_length - 2
                    state = MultipartState.START_BOUNDARY

            elif state == MultipartState.START_BOUNDARY:
                # The first boundary is followed by CRLF, or by "--" for an
                # empty form.
                if index == boundary_length - 2:
                    if c == HYPHEN:
                        state = MultipartState.END_BOUNDARY
                    elif c != CR:
                        raise self._fail("Did not find CR at end of boundary (%d)" % (i,), i)
                    index += 1

                else:
                    if c != LF:
                        raise self._fail("Did not find LF at end of boundary (%d)" % (i,), i)

                    index = 0
                    self.callback("part_begin")
                    state = MultipartState.HEADER_FIELD_START

            elif state == MultipartState.HEADER_FIELD_START:
                index = 0
                marks["header_field"] = i

                # A CR here means the blank line ending the headers.
                if c != CR:
                    self.callback("header_begin")

                state = MultipartState.HEADER_FIELD
                i -= 1

            elif state == MultipartState.HEADER_FIELD:
                if c == CR and index == 0:
                    marks.pop("header_field", None)
                    state = MultipartState.HEADERS_ALMOST_DONE
                    i += 1
                    continue

                index += 1

                if c == COLON:
                    if index == 1:
                        raise self._fail("Found 0-length header at %d" % (i,), i)

                    data_callback("header_field", i)
                    state = MultipartState.HEADER_VALUE_START

                elif c not in TOKEN_CHARS_SET:
                    raise self._fail("Found invalid character %r in header at %d" % (c, i), i)

            elif state == MultipartState.HEADER_VALUE_START:
                # Skip leading spaces.
                if c == SPACE:
                    i += 1
                    continue

                marks["header_value"] = i
                state = MultipartState.HEADER_VALUE
                i -= 1

            elif state == MultipartState.HEADER_VALUE:
                if c == CR:
                    data_callback("header_value", i)
                    self.callback("header_end")
                    state = MultipartState.HEADER_VALUE_ALMOST_DONE

            elif state == MultipartState.HEADER_VALUE_ALMOST_DONE:
                if c != LF:
                    raise self._fail(f"Did not find LF character at end of header (found {c!r})", i)

                state = MultipartState.HEADER_FIELD_START

            elif state == MultipartState.HEADERS_ALMOST_DONE:
                if c != LF:
                    raise self._fail(f"Did not find LF at end of headers (found {c!r})", i)

                self.callback("headers_finished")
                state = MultipartState.PART_DATA_START

            elif state == MultipartState.PART_DATA_START:
                marks["part_data"] = i
                state = MultipartState.PART_DATA
                i -= 1

            elif state == MultipartState.PART_DATA:
                prev_index = index

                if index == 0:
                    # Fast path: look for the whole boundary in this chunk.
                    i0 = data.find(boundary, i, length)
                    if i0 >= 0:
                        index = boundary_length - 1
                        i = i0 + boundary_length - 1
                    else:
                        # Only the tail of the chunk can hold the start of
                        # a boundary; jump to the first CR there.
                        i = max(i, length - boundary_length)
                        while i < length - 1 and data[i] != boundary[0]:
                            i += 1

                    c = data[i]

                if index < boundary_length:
                    if boundary[index] == c:
                        index += 1
                    else:
                        index = 0

                elif index == boundary_length:
                    # The boundary is followed by CRLF, or by "--" if it's the
                    # last one.
                    index += 1
                    if c == CR:
                        flags |= FLAG_PART_BOUNDARY
                    elif c == HYPHEN:
                        flags |= FLAG_LAST_BOUNDARY
                    else:
                        index = 0

                elif index == boundary_length + 1:
                    if flags & FLAG_PART_BOUNDARY:
                        if c == LF:
                            flags &= ~FLAG_PART_BOUNDARY

                            data_callback("part_data", i - index)
                            self.callback("part_end")
                            self.callback("part_begin")

                            index = 0
                            state = MultipartState.HEADER_FIELD_START
                            i += 1
                            continue

                        index = 0
                        flags &= ~FLAG_PART_BOUNDARY

                    elif flags & FLAG_LAST_BOUNDARY:
                        if c == HYPHEN:
                            data_callback("part_data", i - index)
                            self.callback("part_end")
                            self.callback("end")
                            state = MultipartState.END
                        else:
                            index = 0
                            flags &= ~FLAG_LAST_BOUNDARY

                # A partial match turned out not to be the boundary.  Those
                # bytes are part data, and this byte must be looked at again.
                if index == 0 and prev_index > 0:
                    i -= 1

            elif state == MultipartState.END_BOUNDARY:
                if index == boundary_length - 1:
                    if c != HYPHEN:
                        raise self._fail("Did not find - at end of boundary (%d)" % (i,), i)
                    index += 1
                    self.callback("end")
                    state = MultipartState.END

            elif state == MultipartState.END:
                # Allow a trailing CRLF, ignore anything else.
                if c == CR and i + 1 < length and data[i + 1] == LF:
                    i += 2
                    continue
                self.logger.warning("Skipping data after last boundary")
                i = length
                break

            else:  # pragma: no cover (error case)
                raise self._fail("Reached an unknown state %d at %d" % (state, i), i)

            i += 1

        # Flush whatever header or part data is still marked.  For part
        # data, bytes that may be the start of a boundary are held back.
        data_callback("header_field", length, True)
        data_callback("header_value", length, True)
        data_callback("part_data", length - index, True)

        self.state = state
        self.index = index
        self.flags = flags

        return length

    def finalize(self) -> None:
        """Signal that no more data will be written.

        :raises MalformedMultipartError: if the closing boundary was never
            seen, i.e. the body was truncated.
        """
        if self.state != MultipartState.END:
            raise self._fail(f"Stream ended unexpectedly (parser state {self.state.name})", -1)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(boundary={self.boundary!r})"


class RequestContext:
    """A read-only view of the parts of a request the decoder needs.

    :param content_type: the request's Content-Type header
    :param content_length: the declared body length; -1 when unknown
    :param encoding: the codec used to decode field names and values
    :param body: a stream supporting ``read(n)``
    """

    def __init__(
        self, content_type: str | None, content_length: int | None, encoding: str, body: SupportsRead | None
    ) -> None:
        self._content_type = content_type
        self._content_length = content_length if content_length is not None and content_length >= 0 else -1
        self._encoding = encoding
        self._body = body

    @classmethod
    def from_request(cls, request: Mapping[str, Any], encoding: str) -> RequestContext:
        """Build a context from a request dict.  ``encoding`` has already been
        resolved by the caller.
        """
        content_length = request.get("content_length")
        if content_length is not None:
            content_length = int(content_length)
        return cls(request.get("content_type"), content_length, encoding, request.get("body"))

    @property
    def content_type(self) -> str | None:
        return self._content_type

    @property
    def content_length(self) -> int:
        return self._content_length

    @property
    def encoding(self) -> str:
        return self._encoding

    @property
    def body(self) -> SupportsRead | None:
        return self._body

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(content_type={self.content_type!r}, "
            f"content_length={self.content_length!r}, encoding={self.encoding!r})"
        )


class MultipartDecoder:
    """Streams a multipart/form-data request body into :class:`Field` and
    :class:`File` objects.

    The body is read in chunks of at most ``chunk_size`` bytes, and never
    past the declared content length.  After each chunk, ``reporter`` is
    called with the bytes read so far, the declared content length (-1 if
    unknown) and the number of parts begun so far, including one whose
    headers have not been read completely yet.

    :param reporter: a progress callback, see :class:`ProgressReporter`
    :param config: storage options merged over :attr:`DEFAULT_CONFIG`
    :param chunk_size: the maximum number of bytes read at once
    :param FileClass: the class used to create file parts
    :param FieldClass: the class used to create form fields
    """

    #: By default every file part is spilled to disk and left there.
    DEFAULT_CONFIG: FileConfig = {
        "MAX_MEMORY_FILE_SIZE": -1,
        "UPLOAD_DIR": None,
        "UPLOAD_KEEP_FILENAME": False,
        "UPLOAD_KEEP_EXTENSIONS": False,
        "UPLOAD_DELETE_TMP": False,
    }

    def __init__(
        self,
        reporter: ProgressCallback | None = None,
        config: FileConfig | dict[str, Any] = {},
        chunk_size: int = 1048576,
        FileClass: type[FileProtocol] = File,
        FieldClass: type[FieldProtocol] = Field,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.reporter = reporter

        if not isinstance(chunk_size, int) or chunk_size < 1:
            raise ValueError("chunk_size must be a positive integer, not %r" % (chunk_size,))
        self.chunk_size = chunk_size

        self.config: FileConfig = self.DEFAULT_CONFIG.copy()
        self.config.update(config)  # type: ignore[typeddict-item]

        self.FileClass = FileClass
        self.FieldClass = FieldClass

    @staticmethod
    def get_boundary(content_type: str | None) -> bytes:
        """Extract the boundary from a multipart/form-data Content-Type."""
        if not content_type or not content_type.startswith(MULTIPART_FORM_DATA):
            raise MalformedMultipartError(f"Not a {MULTIPART_FORM_DATA} request: {content_type!r}")

        _, params = parse_options_header(content_type)
        boundary = params.get(b"boundary")
        if not boundary:
            logging.getLogger(__name__).warning("No boundary given")
            raise MalformedMultipartError("No boundary given")
        return boundary

    def _make_part(self, headers: dict[bytes, bytes], encoding: str) -> FieldProtocol | FileProtocol | None:
        _, options = parse_options_header(headers.get(b"content-disposition"))

        field_name = options.get(b"name")
        if field_name is None:
            self.logger.warning("Skipping part without a field name")
            return None
        name = field_name.decode(encoding, "replace")

        file_name = options.get(b"filename")
        if file_name is None:
            return self.FieldClass(name, encoding)

        content_type = headers.get(b"content-type")
        return self.FileClass(
            file_name.decode(encoding, "replace"),
            name,
            content_type=content_type.decode("latin-1") if content_type is not None else None,
            config=self.config,
        )

    def _report(self, bytes_read: int, content_length: int, items: int) -> None:
        if self.reporter is not None:
            self.reporter(bytes_read, content_length, items)

    def iter_parts(self, context: RequestContext) -> Iterator[FieldProtocol | FileProtocol]:
        """Decode the request body, yielding each part once it is complete.

        :raises MalformedMultipartError: for a bad boundary, a bad part
            header or a truncated body
        :raises StreamIOError: if reading the body fails
        """
        boundary = self.get_boundary(context.content_type)
        encoding = context.encoding
        content_length = context.content_length
        body = context.body
        if body is None:
            raise MalformedMultipartError("Request has no body")

        done: list[FieldProtocol | FileProtocol] = []
        current: FieldProtocol | FileProtocol | None = None
        headers: dict[bytes, bytes] = {}
        header_name: list[bytes] = []
        header_value: list[bytes] = []
        items = 0

        def on_part_begin() -> None:
            nonlocal headers, items
            items += 1
            headers = {}

        def on_header_field(data: bytes, start: int, end: int) -> None:
            header_name.append(data[start:end])

        def on_header_value(data: bytes, start: int, end: int) -> None:
            header_value.append(data[start:end])

        def on_header_end() -> None:
            headers[b"".join(header_name).lower()] = b"".join(header_value)
            del header_name[:]
            del header_value[:]

        def on_headers_finished() -> None:
            nonlocal current
            current = self._make_part(headers, encoding)

        def on_part_data(data: bytes, start: int, end: int) -> None:
            if current is not None:
                current.write(data[start:end])

        def on_part_end() -> None:
            nonlocal current
            if current is not None:
                current.finalize()
                done.append(current)
                current = None

        parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": on_part_begin,
                "on_part_data": on_part_data,
                "on_part_end": on_part_end,
                "on_header_field": on_header_field,
                "on_header_value": on_header_value,
                "on_header_end": on_header_end,
                "on_headers_finished": on_headers_finished,
            },
        )

        bytes_read = 0
        try:
            while True:
                if content_length >= 0:
                    max_readable = min(content_length - bytes_read, self.chunk_size)
                    if max_readable <= 0:
                        break
                else:
                    max_readable = self.chunk_size

                try:
                    buff = body.read(max_readable)
                except OSError as e:
                    self.logger.warning("Error reading request body after %d bytes", bytes_read)
                    raise StreamIOError("Error reading request body") from e

                if not buff:
                    break

                parser.write(buff)
                bytes_read += len(buff)
                self._report(bytes_read, content_length, items)

                while done:
                    yield done.pop(0)

            parser.finalize()
        except Exception:
            # Nothing from this pass that hasn't been handed out yet may
            # outlive the failure.
            for part in done + ([current] if current is not None else []):
                _discard(part)
            raise

        while done:
            yield done.pop(0)

    def parse(self, context: RequestContext) -> list[FieldProtocol | FileProtocol]:
        """Decode the whole body and return its parts in order.  Either every
        part is returned, or the error is raised and all parts created
        during this pass are closed (spilled files are removed).
        """
        parts: list[FieldProtocol | FileProtocol] = []
        try:
            for part in self.iter_parts(context):
                parts.append(part)
        except Exception:
            for part in parts:
                _discard(part)
            raise
        return parts

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(chunk_size={self.chunk_size!r}, config={self.config!r})"


def decode_multipart(
    context: RequestContext, reporter: ProgressCallback | None = None, config: FileConfig | dict[str, Any] = {}
) -> list[FieldProtocol | FileProtocol]:
    """This function is useful if you just want to decode a request body
    into a list of parts.

    :param context: the request to decode
    :param reporter: an optional progress callback
    :param config: storage options, see :attr:`MultipartDecoder.DEFAULT_CONFIG`
    """
    return MultipartDecoder(reporter, config=config).parse(context)


def _discard(part: Any) -> None:
    delete = getattr(part, "delete", None)
    if delete is not None:
        delete()
    else:
        part.close()


_missing = object()
