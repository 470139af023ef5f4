"""Tests for worker task authentication."""

from __future__ import annotations

import os
from unittest.mock import patch

from starlette.requests import Request

from imobly.api.task_auth import (
    LOCAL_DEV_AUDIENCE,
    extract_bearer_token,
    verify_task_auth,
    verify_task_oidc,
)

AUDIENCE = "https://worker.example.com"
SERVICE_ACCOUNT = "tasks@imobly.iam.gserviceaccount.com"


def _request(headers: dict[str, str] | None = None) -> Request:
    raw = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "POST", "path": "/tasks/bradesco/sync-pending", "headers": raw})


class TestExtractBearerToken:
    def test_bearer(self):
        assert extract_bearer_token(_request({"Authorization": "Bearer abc.def"})) == "abc.def"

    def test_case_insensitive_scheme(self):
        assert extract_bearer_token(_request({"Authorization": "bearer abc"})) == "abc"

    def test_other_scheme_or_missing(self):
        assert extract_bearer_token(_request({"Authorization": "Basic dXNlcg=="})) is None
        assert extract_bearer_token(_request({"Authorization": "Bearer "})) is None
        assert extract_bearer_token(_request()) is None


class TestVerifyTaskOidc:
    def test_fails_closed_without_audience(self):
        with patch.dict(os.environ, {}, clear=True), patch(
            "imobly.api.task_auth.id_token.verify_oauth2_token"
        ) as verify:
            assert verify_task_oidc("token") is False
        verify.assert_not_called()

    def test_valid_token(self):
        with patch.dict(os.environ, {"TASKS_OIDC_AUDIENCE": AUDIENCE}, clear=True), patch(
            "imobly.api.task_auth.id_token.verify_oauth2_token",
            return_value={"email": SERVICE_ACCOUNT},
        ) as verify:
            assert verify_task_oidc("token") is True
        assert verify.call_args.kwargs["audience"] == AUDIENCE

    def test_invalid_token(self):
        with patch.dict(os.environ, {"TASKS_OIDC_AUDIENCE": AUDIENCE}, clear=True), patch(
            "imobly.api.task_auth.id_token.verify_oauth2_token",
            side_effect=ValueError("Token expired"),
        ):
            assert verify_task_oidc("token") is False

    def test_service_account_mismatch(self):
        env = {"TASKS_OIDC_AUDIENCE": AUDIENCE, "TASKS_OIDC_SERVICE_ACCOUNT": SERVICE_ACCOUNT}
        with patch.dict(os.environ, env, clear=True), patch(
            "imobly.api.task_auth.id_token.verify_oauth2_token",
            return_value={"email": "intruder@example.com"},
        ):
            assert verify_task_oidc("token") is False


class TestVerifyTaskAuth:
    def test_local_dev_secret(self):
        env = {"TASKS_OIDC_AUDIENCE": LOCAL_DEV_AUDIENCE, "INTERNAL_TASK_SECRET": "dev-secret"}
        with patch.dict(os.environ, env, clear=True):
            assert verify_task_auth(_request({"X-Internal-Task-Secret": "dev-secret"})) is True

    def test_local_dev_secret_ignored_outside_local_dev(self):
        env = {"TASKS_OIDC_AUDIENCE": AUDIENCE, "INTERNAL_TASK_SECRET": "dev-secret"}
        with patch.dict(os.environ, env, clear=True):
            assert verify_task_auth(_request({"X-Internal-Task-Secret": "dev-secret"})) is False

    def test_empty_secret_never_matches(self):
        env = {"TASKS_OIDC_AUDIENCE": LOCAL_DEV_AUDIENCE, "INTERNAL_TASK_SECRET": ""}
        with patch.dict(os.environ, env, clear=True):
            assert verify_task_auth(_request({"X-Internal-Task-Secret": ""})) is False

    def test_bearer_goes_through_oidc(self):
        with patch.dict(os.environ, {"TASKS_OIDC_AUDIENCE": AUDIENCE}, clear=True), patch(
            "imobly.api.task_auth.id_token.verify_oauth2_token", return_value={}
        ):
            assert verify_task_auth(_request({"Authorization": "Bearer tok"})) is True
