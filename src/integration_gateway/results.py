"""Uniform outcome types returned by the outbound verb helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Union


@dataclass(frozen=True)
class Success:
    """
    A well-formed response with a status below 400 (3xx included).

    headers holds the response headers with lower-cased names, for callers
    that need Location or pagination links.
    """

    payload: Any
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """
    A call that did not produce a usable response.

    status_code is set only when the server answered with an error status;
    transport failures and SSRF blocks carry None.
    """

    message: str
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return False


CallOutcome = Union[Success, Failure]
