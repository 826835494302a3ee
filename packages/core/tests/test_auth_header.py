"""Tests for authorization header construction."""

import base64

from adolens_core.ado.auth import build_auth_header
from adolens_core.models import AuthScheme, Credential


class TestBuildAuthHeader:
    def test_basic_encodes_empty_user_and_token(self):
        header = build_auth_header(Credential("s3cret", AuthScheme.BASIC))
        encoded = header["Authorization"].removeprefix("Basic ")
        assert base64.b64decode(encoded).decode() == ":s3cret"

    def test_bearer_passes_token_verbatim(self):
        assert build_auth_header(Credential("abc.def", AuthScheme.BEARER)) == {"Authorization": "Bearer abc.def"}

    def test_default_scheme_is_basic(self):
        assert build_auth_header(Credential("x"))["Authorization"].startswith("Basic ")


class TestCredential:
    def test_secret_not_in_repr(self):
        assert "s3cret" not in repr(Credential("s3cret", AuthScheme.BEARER))

    def test_scheme_parse_is_case_insensitive(self):
        assert AuthScheme.parse("bearer") is AuthScheme.BEARER
        assert AuthScheme.parse(" Basic ") is AuthScheme.BASIC
