from __future__ import annotations

import codecs
import logging
from typing import TYPE_CHECKING, cast

from .exceptions import UnknownEncodingError
from .multipart import MULTIPART_FORM_DATA, MultipartDecoder, RequestContext
from .params import accumulate_params
from .session import ProgressReporter, SessionBridge

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable
    from typing import Any, TypedDict

    from .multipart import FileConfig, SupportsRead
    from .params import ParamMap
    from .session import SessionStore

    class Request(TypedDict, total=False):
        content_type: str | None
        content_length: int | None
        character_encoding: str | None
        body: SupportsRead | None
        cookies: dict[str, dict[str, str]] | None
        params: dict[str, Any] | None
        multipart_params: dict[str, Any] | None

    Handler = Callable[[Request], Any]

DEFAULT_COOKIE_NAME = "ring-session"
DEFAULT_ENCODING = "UTF-8"


def multipart_form(request: Request) -> bool:
    """Does the request carry a multipart form?"""
    content_type = request.get("content_type")
    return content_type is not None and content_type.startswith(MULTIPART_FORM_DATA)


def get_session_key(request: Request, cookie_name: str = DEFAULT_COOKIE_NAME) -> str | None:
    cookie = (request.get("cookies") or {}).get(cookie_name)
    if cookie is None:
        return None
    return cookie.get("value")


def resolve_encoding(request: Request, encoding: str | None = None) -> str:
    """Pick the encoding for field values: the explicit option, then the
    request's character encoding, then UTF-8.
    """
    resolved = encoding or request.get("character_encoding") or DEFAULT_ENCODING
    try:
        codecs.lookup(resolved)
    except LookupError:
        logging.getLogger(__name__).warning("Unknown encoding: %r", resolved)
        raise UnknownEncodingError("Unknown encoding: %r" % (resolved,))
    return resolved


def parse_multipart_params(
    request: Request,
    encoding: str,
    store: SessionStore,
    key: str | None,
    config: FileConfig | dict[str, Any] = {},
) -> ParamMap:
    """Decode the request body and fold its parts into a parameter dict,
    reporting progress to the session ``key`` of ``store`` on the way.
    """
    reporter = ProgressReporter(SessionBridge(store, key))
    decoder = MultipartDecoder(reporter, config=config)
    return accumulate_params(decoder.parse(RequestContext.from_request(request, encoding)))


def wrap_upload_progress(
    handler: Handler,
    session_store: SessionStore,
    encoding: str | None = None,
    cookie_name: str = DEFAULT_COOKIE_NAME,
    config: FileConfig | dict[str, Any] = {},
) -> Handler:
    """Middleware that parses multipart parameters from a request and keeps
    the progress of the upload in the request's session.

    The handler is called with a copy of the request that has these keys
    added to:

    ``multipart_params``
        the parameters decoded from the body
    ``params``
        all of the request's parameters, with the decoded ones taking
        precedence

    The session named by the ``cookie_name`` cookie gets an
    ``upload_progress`` entry while the body is read.  Requests that are
    not multipart/form-data are passed on with nothing decoded.

    :param handler: the next handler, called with the new request
    :param session_store: where the session records live
    :param encoding: the encoding of field values; defaults to the
                     request's character encoding, or UTF-8
    :param cookie_name: the name of the session cookie
    :param config: file storage options, see
                   :attr:`~upload_progress.multipart.MultipartDecoder.DEFAULT_CONFIG`
    """
    logger = logging.getLogger(__name__)

    def middleware(request: Request) -> Any:
        if multipart_form(request):
            key = get_session_key(request, cookie_name)
            logger.debug("Parsing multipart request for session %r", key)
            params = parse_multipart_params(request, resolve_encoding(request, encoding), session_store, key, config)
        else:
            params = {}

        new_request = cast("Request", dict(request))
        new_request["multipart_params"] = {**(request.get("multipart_params") or {}), **params}
        new_request["params"] = {**(request.get("params") or {}), **params}
        return handler(new_request)

    return middleware

