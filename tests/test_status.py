"""Tests for the status classifier."""

from __future__ import annotations

import pytest

from steadyhttp.status import StatusCategory, StatusClassifier


class TestDefaults:
    @pytest.mark.parametrize("code", [200, 201, 202, 204])
    def test_success_codes(self, code: int) -> None:
        classifier = StatusClassifier()
        assert classifier.is_success(code)
        assert classifier.category(code) == StatusCategory.SUCCESS

    @pytest.mark.parametrize("code", [301, 302, 303, 304, 307, 308])
    def test_redirect_codes(self, code: int) -> None:
        assert StatusClassifier().category(code) == StatusCategory.REDIRECT

    def test_client_and_server_errors(self) -> None:
        classifier = StatusClassifier()
        assert classifier.is_client_error(404)
        assert not classifier.is_server_error(404)
        assert classifier.is_server_error(503)
        assert classifier.category(429) == StatusCategory.ERROR
        assert classifier.category(500) == StatusCategory.ERROR

    @pytest.mark.parametrize("code", [406, 418, 451, 499])
    def test_every_4xx_is_client_error(self, code: int) -> None:
        classifier = StatusClassifier()
        assert classifier.is_client_error(code)
        assert classifier.category(code) == StatusCategory.ERROR

    @pytest.mark.parametrize("code", [505, 507, 511, 599])
    def test_every_5xx_is_server_error(self, code: int) -> None:
        classifier = StatusClassifier()
        assert classifier.is_server_error(code)
        assert classifier.category(code) == StatusCategory.ERROR

    def test_unlisted_code_is_unknown(self) -> None:
        classifier = StatusClassifier()
        assert classifier.category(299) == StatusCategory.UNKNOWN
        assert classifier.category(600) == StatusCategory.UNKNOWN
        assert not classifier.is_error(600)


class TestCustomSets:
    def test_error_wins_over_success(self) -> None:
        classifier = StatusClassifier(success_codes={200}, error_codes={200})
        assert classifier.category(200) == StatusCategory.ERROR
        assert classifier.is_success(200)

    def test_code_only_in_client_set_is_error(self) -> None:
        classifier = StatusClassifier(error_codes=frozenset(), client_error_codes={499})
        assert classifier.is_error(499)
        assert classifier.category(499) == StatusCategory.ERROR

    def test_is_immutable(self) -> None:
        classifier = StatusClassifier()
        with pytest.raises(Exception):
            classifier.success_codes = frozenset({299})  # type: ignore[misc]


class TestForApi:
    def test_conventional_api(self) -> None:
        classifier = StatusClassifier.for_api()
        assert classifier.category(201) == StatusCategory.SUCCESS
        assert classifier.category(302) == StatusCategory.REDIRECT
        assert classifier.category(307) == StatusCategory.UNKNOWN
        assert classifier.is_server_error(500)
        assert not classifier.is_server_error(503)

    def test_uses_200_for_errors(self) -> None:
        classifier = StatusClassifier.for_api(uses_200_for_errors=True)
        assert classifier.category(200) == StatusCategory.ERROR
        assert classifier.is_client_error(200)
        assert classifier.is_server_error(200)

    def test_custom_success_and_redirect_codes(self) -> None:
        classifier = StatusClassifier.for_api(
            custom_success_codes={200, 299}, custom_redirect_codes={399}
        )
        assert classifier.category(299) == StatusCategory.SUCCESS
        assert classifier.category(399) == StatusCategory.REDIRECT
        assert classifier.category(301) == StatusCategory.UNKNOWN
