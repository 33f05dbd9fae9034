from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any, Protocol, TypedDict

    class SessionStore(Protocol):
        def read_session(self, key: str | None) -> dict[str, Any]: ...
        def write_session(self, key: str | None, data: dict[str, Any]) -> str: ...
        def delete_session(self, key: str | None) -> None: ...

    class UploadProgress(TypedDict):
        bytes_read: int
        content_length: int
        items: int


#: The session entry the progress of the current upload is written to.
UPLOAD_PROGRESS_KEY = "upload_progress"


class MemoryStore:
    """A session store that keeps every session in a dict.

    Reads return a copy of the stored record, and writes replace it
    outright.  There is no locking: when two writers race on the same key
    the last write wins.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)
        self.sessions: dict[str, dict[str, Any]] = {}

    def read_session(self, key: str | None) -> dict[str, Any]:
        if key is None:
            return {}
        return dict(self.sessions.get(key, {}))

    def write_session(self, key: str | None, data: dict[str, Any]) -> str:
        if key is None:
            key = str(uuid.uuid4())
            self.logger.debug("Creating new session %r", key)
        self.sessions[key] = dict(data)
        return key

    def delete_session(self, key: str | None) -> None:
        if key is not None:
            self.sessions.pop(key, None)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(sessions={len(self.sessions)})"


class SessionBridge:
    """Reads and writes the session record of a single session key.

    :param store: the session store, see :class:`SessionStore`
    :param key: the session key, or None if the request has no session
    """

    def __init__(self, store: SessionStore, key: str | None) -> None:
        self.store = store
        self.key = key

    def read(self) -> dict[str, Any]:
        return self.store.read_session(self.key)

    def write(self, record: dict[str, Any]) -> str:
        return self.store.write_session(self.key, record)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(store={self.store!r}, key={self.key!r})"


class ProgressReporter:
    """Records upload progress in a session.

    Each call reads the session record, replaces its ``upload_progress``
    entry with the new figures and writes the record back.  Nothing guards
    the read and the write, so the latest report for a key is the one that
    sticks.

    A request without a session key has nowhere to report to; such reports
    are dropped.  Errors raised by the store are not caught.

    :param bridge: the :class:`SessionBridge` for the request's session
    """

    def __init__(self, bridge: SessionBridge) -> None:
        self.logger = logging.getLogger(__name__)
        self.bridge = bridge

    def __call__(self, bytes_read: int, content_length: int, items: int) -> None:
        self.report(bytes_read, content_length, items)

    def report(self, bytes_read: int, content_length: int, items: int) -> None:
        if self.bridge.key is None:
            self.logger.debug("No session key, skipping progress report (%d bytes read)", bytes_read)
            return

        self.logger.debug("Upload progress for session %r: %d/%d", self.bridge.key, bytes_read, content_length)
        record = self.bridge.read()
        progress: UploadProgress = {"bytes_read": bytes_read, "content_length": content_length, "items": items}
        record[UPLOAD_PROGRESS_KEY] = progress
        self.bridge.write(record)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(bridge={self.bridge!r})"
