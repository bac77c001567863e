"""
Unit tests for X-Hub-Signature-256 verification and signing-secret configuration.
"""

import pytest

from app.config import Settings
from app.errors import SignatureInvalid
from app.utils import compute_hmac_signature, verify_hmac_signature

SECRET = "app-secret"
BODY = b'{"object":"whatsapp_business_account","entry":[]}'


class TestVerifyHmacSignature:

    def test_valid_signature(self):
        header = "sha256=" + compute_hmac_signature(BODY, SECRET)

        verify_hmac_signature(BODY, header, SECRET)

    def test_uppercase_hex_accepted(self):
        header = "sha256=" + compute_hmac_signature(BODY, SECRET).upper()

        verify_hmac_signature(BODY, header, SECRET)

    def test_known_digest(self):
        # HMAC-SHA256("key", "The quick brown fox jumps over the lazy dog")
        assert compute_hmac_signature(b"The quick brown fox jumps over the lazy dog", "key") == (
            "f7bc83f430538424b13298e6aa6fb143ef4d59a14946175997479dbc2d1a3cd8"
        )

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header(self, header):
        with pytest.raises(SignatureInvalid):
            verify_hmac_signature(BODY, header, SECRET)

    def test_missing_prefix(self):
        with pytest.raises(SignatureInvalid):
            verify_hmac_signature(BODY, compute_hmac_signature(BODY, SECRET), SECRET)

    def test_sha1_prefix_rejected(self):
        with pytest.raises(SignatureInvalid):
            verify_hmac_signature(BODY, "sha1=" + compute_hmac_signature(BODY, SECRET), SECRET)

    def test_wrong_secret(self):
        header = "sha256=" + compute_hmac_signature(BODY, "other-secret")

        with pytest.raises(SignatureInvalid):
            verify_hmac_signature(BODY, header, SECRET)

    def test_body_modified(self):
        header = "sha256=" + compute_hmac_signature(BODY, SECRET)

        with pytest.raises(SignatureInvalid):
            verify_hmac_signature(BODY + b" ", header, SECRET)

    def test_empty_secret_rejects(self):
        header = "sha256=" + compute_hmac_signature(BODY, "")

        with pytest.raises(SignatureInvalid):
            verify_hmac_signature(BODY, header, "")

    def test_non_ascii_header_rejected(self):
        with pytest.raises(SignatureInvalid):
            verify_hmac_signature(BODY, "sha256=café", SECRET)

    def test_error_maps_to_forbidden(self):
        with pytest.raises(SignatureInvalid) as exc_info:
            verify_hmac_signature(BODY, None, SECRET)

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "forbidden"


class TestSigningSecret:

    def test_app_secret_preferred(self):
        settings = Settings(_env_file=None, WHATSAPP_VERIFY_TOKEN="verify", WHATSAPP_APP_SECRET="secret")

        assert settings.signing_secret == "secret"

    def test_falls_back_to_verify_token(self):
        settings = Settings(_env_file=None, WHATSAPP_VERIFY_TOKEN="verify", WHATSAPP_APP_SECRET="")

        assert settings.signing_secret == "verify"
