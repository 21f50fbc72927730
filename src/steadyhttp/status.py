"""Configurable status-code classification.

:class:`StatusClassifier` is the only place in steadyhttp that decides
whether a status code means success.  The request pipeline, the cache and
the structured errors all ask the classifier that is active for the call,
so services that do not follow HTTP conventions (for example APIs that
report application errors inside a ``200``) can be modelled by swapping the
code sets.
"""

from __future__ import annotations

import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StatusCategory(str, enum.Enum):
    """Coarse verdict for a status code."""

    SUCCESS = "success"
    REDIRECT = "redirect"
    ERROR = "error"
    UNKNOWN = "unknown"


_DEFAULT_CLIENT_ERRORS = frozenset(range(400, 500))
_DEFAULT_SERVER_ERRORS = frozenset(range(500, 600))


class StatusClassifier(BaseModel):
    """Maps integer status codes to success / redirect / error verdicts.

    The defaults follow conventional HTTP semantics.  Every set can be
    replaced, and the sets are authoritative: a code that appears in both
    an error set and ``success_codes`` is reported as an error.

    Example::

        # An API that signals failures with 200 and an error body
        classifier = StatusClassifier.for_api(uses_200_for_errors=True)
        classifier.category(200)  # StatusCategory.ERROR
    """

    model_config = ConfigDict(frozen=True)

    success_codes: frozenset[int] = Field(
        default=frozenset({200, 201, 202, 204}),
        description="Codes treated as success",
    )
    error_codes: frozenset[int] = Field(
        default=_DEFAULT_CLIENT_ERRORS | _DEFAULT_SERVER_ERRORS,
        description="Codes treated as errors without a client/server distinction",
    )
    redirect_codes: frozenset[int] = Field(
        default=frozenset({301, 302, 303, 304, 307, 308}),
        description="Codes treated as redirects",
    )
    client_error_codes: frozenset[int] = Field(default=_DEFAULT_CLIENT_ERRORS)
    server_error_codes: frozenset[int] = Field(default=_DEFAULT_SERVER_ERRORS)

    @classmethod
    def for_api(
        cls,
        uses_200_for_errors: bool = False,
        custom_success_codes: Optional[set[int]] = None,
        custom_redirect_codes: Optional[set[int]] = None,
    ) -> StatusClassifier:
        """Build a classifier for a common API pattern.

        Args:
            uses_200_for_errors: The API puts error details in ``200``
                responses, so ``200`` is placed in every error set.
            custom_success_codes: Replaces the success set.
            custom_redirect_codes: Replaces the redirect set.
        """
        redirects = frozenset(custom_redirect_codes or {301, 302, 308})
        if uses_200_for_errors:
            return cls(
                success_codes=frozenset(custom_success_codes or {200}),
                error_codes=frozenset({200}),
                redirect_codes=redirects,
                client_error_codes=frozenset({200}),
                server_error_codes=frozenset({200}),
            )
        return cls(
            success_codes=frozenset(custom_success_codes or {200, 201, 204}),
            error_codes=frozenset({400, 401, 403, 404, 422, 429, 500}),
            redirect_codes=redirects,
            client_error_codes=frozenset({400, 401, 403, 404, 422, 429}),
            server_error_codes=frozenset({500}),
        )

    def is_success(self, status_code: int) -> bool:
        return status_code in self.success_codes

    def is_redirect(self, status_code: int) -> bool:
        return status_code in self.redirect_codes

    def is_client_error(self, status_code: int) -> bool:
        return status_code in self.client_error_codes

    def is_server_error(self, status_code: int) -> bool:
        return status_code in self.server_error_codes

    def is_error(self, status_code: int) -> bool:
        """True when the code is in any of the error sets."""
        return (
            status_code in self.error_codes
            or status_code in self.client_error_codes
            or status_code in self.server_error_codes
        )

    def category(self, status_code: int) -> StatusCategory:
        """Return the verdict for *status_code*; error sets are checked first."""
        if self.is_error(status_code):
            return StatusCategory.ERROR
        if self.is_success(status_code):
            return StatusCategory.SUCCESS
        if self.is_redirect(status_code):
            return StatusCategory.REDIRECT
        return StatusCategory.UNKNOWN
