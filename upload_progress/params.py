from __future__ import annotations

from typing import TYPE_CHECKING

from .multipart import Field

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable
    from typing import Any, TypeAlias, Union

    from .multipart import FieldProtocol, FileProtocol

    #: A single decoded value: the text of a form field, or a file part.
    ParamValue: TypeAlias = Union[str, FileProtocol, list[Any]]
    ParamMap: TypeAlias = dict[str, ParamValue]


def assoc_param(params: ParamMap, key: str, value: Any) -> ParamMap:
    """Add ``value`` under ``key``, turning the entry into a list once a key
    is seen more than once.

    A key seen once maps to its value; a key seen N times maps to a list of
    its N values in the order they were added.  ``params`` is updated in
    place and returned.
    """
    if key in params:
        current = params[key]
        if isinstance(current, list):
            current.append(value)
        else:
            params[key] = [current, value]
    else:
        params[key] = value
    return params


def accumulate_params(parts: Iterable[FieldProtocol | FileProtocol]) -> ParamMap:
    """Fold decoded parts into a parameter dict.  Form fields contribute
    their text value, file parts contribute themselves.
    """
    params: ParamMap = {}
    for part in parts:
        if isinstance(part, Field):
            assoc_param(params, part.field_name, part.value)
        else:
            assoc_param(params, part.field_name, part)  # type: ignore[attr-defined]
    return params
