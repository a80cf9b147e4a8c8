import json
from urllib.parse import quote

import jwt
import pytest

from geo_checkin.core.errors import MalformedPayload, MissingField, RejectionReason, UnknownSecurityLevel
from geo_checkin.core.qr import QR_AUD, CheckInToken, TokenCodec, verify_integrity

from conftest import NOW, SECRET


def _json(**fields) -> str:
    return json.dumps(fields)


class TestDecode:
    def test_bare_json(self, codec):
        tok = codec.decode(_json(eventId="evt-1", token="abc", timestamp=1_700_000_000_000, securityLevel="high"))
        assert tok == CheckInToken("evt-1", 1_700_000_000_000, "high", "abc")

    def test_uri_wrapped(self, codec):
        data = quote(_json(eventId="evt-1", token="abc", timestamp=5, securityLevel="basic"), safe="")
        tok = codec.decode(f"eviden://checkin?data={data}")
        assert tok.event_id == "evt-1"
        assert tok.issued_at_ms == 5

    def test_surrounding_whitespace_ignored(self, codec):
        tok = codec.decode("  " + _json(eventId="e", timestamp=1, securityLevel="basic") + "\n")
        assert tok.token == ""

    def test_json_containing_a_url_is_not_treated_as_uri(self, codec):
        tok = codec.decode(_json(eventId="https://events.example/42", timestamp=1, securityLevel="basic"))
        assert tok.event_id == "https://events.example/42"

    def test_integral_float_timestamp_accepted(self, codec):
        assert codec.decode(_json(eventId="e", timestamp=12.0, securityLevel="basic")).issued_at_ms == 12

    def test_unknown_level_is_carried_through(self, codec):
        # decoding does not judge the tier; the validator does
        assert codec.decode(_json(eventId="e", timestamp=1, securityLevel="ultra")).security_level == "ultra"

    @pytest.mark.parametrize(
        "payload",
        [
            "",
            "   ",
            "not json at all",
            "[1, 2, 3]",
            '"just a string"',
            _json(eventId=7, timestamp=1, securityLevel="basic"),
            _json(eventId="e", timestamp="1700000000000", securityLevel="basic"),
            _json(eventId="e", timestamp=1.5, securityLevel="basic"),
            _json(eventId="e", timestamp=True, securityLevel="basic"),
            _json(eventId="e", timestamp=1, securityLevel="basic", token=42),
            "https://evil.example/checkin?data=%7B%7D",
            "eviden://checkin?other=1",
            "[" * 5000,
            '{"a":' * 5000,
        ],
    )
    def test_malformed(self, codec, payload):
        with pytest.raises(MalformedPayload) as exc:
            codec.decode(payload)
        assert exc.value.reason is RejectionReason.MALFORMED_PAYLOAD

    @pytest.mark.parametrize(
        "fields,missing",
        [
            (dict(timestamp=1, securityLevel="basic"), "eventId"),
            (dict(eventId="", timestamp=1, securityLevel="basic"), "eventId"),
            (dict(eventId="e", securityLevel="basic"), "timestamp"),
            (dict(eventId="e", timestamp=1), "securityLevel"),
        ],
    )
    def test_missing_field(self, codec, fields, missing):
        with pytest.raises(MissingField) as exc:
            codec.decode(json.dumps(fields))
        assert exc.value.field == missing
        assert exc.value.reason is RejectionReason.MISSING_FIELD


class TestIssue:
    def test_issued_token_decodes_to_itself(self, issuer, codec):
        tok = issuer.issue("evt-1", "maximum", NOW)
        assert codec.decode(codec.encode(tok)) == tok
        assert codec.decode(codec.encode_uri(tok)) == tok

    def test_encoding_is_compact_and_stable(self, issuer, codec):
        tok = issuer.issue("evt-1", "basic", NOW)
        text = codec.encode(tok)
        assert " " not in text
        assert list(json.loads(text)) == ["eventId", "securityLevel", "timestamp", "token"]

    def test_expires_at_follows_level(self, issuer):
        tok = issuer.issue("evt-1", "high", NOW)
        assert tok.issued_at == NOW
        assert (issuer.expires_at(tok) - NOW).total_seconds() == 60

    def test_unknown_level_is_refused(self, issuer):
        with pytest.raises(UnknownSecurityLevel):
            issuer.issue("evt-1", "ultra", NOW)

    def test_custom_uri_scheme(self, issuer):
        codec = TokenCodec("myapp://scan")
        tok = issuer.issue("evt-1", "basic", NOW)
        uri = codec.encode_uri(tok)
        assert uri.startswith("myapp://scan?data=")
        assert codec.decode(uri) == tok
        with pytest.raises(MalformedPayload):
            TokenCodec().decode(uri)


class TestIntegrity:
    def test_genuine_token_verifies(self, issuer):
        assert verify_integrity(issuer.issue("evt-1", "standard", NOW), SECRET)

    def test_other_secret_fails(self, issuer):
        assert not verify_integrity(issuer.issue("evt-1", "standard", NOW), "another-secret-0123456789abcdef")

    def test_edited_fields_fail(self, issuer):
        tok = issuer.issue("evt-1", "maximum", NOW)
        assert not verify_integrity(CheckInToken("evt-2", tok.issued_at_ms, tok.security_level, tok.token), SECRET)
        assert not verify_integrity(CheckInToken("evt-1", tok.issued_at_ms + 1, tok.security_level, tok.token), SECRET)
        assert not verify_integrity(CheckInToken("evt-1", tok.issued_at_ms, "basic", tok.token), SECRET)

    def test_missing_or_garbage_token_fails(self):
        assert not verify_integrity(CheckInToken("evt-1", 1, "basic", ""), SECRET)
        assert not verify_integrity(CheckInToken("evt-1", 1, "basic", "abc.def.ghi"), SECRET)

    def test_wrong_audience_fails(self):
        forged = jwt.encode(
            {"aud": "somewhere-else", "iss": "geo-checkin-svc", "jti": "x", "scope": "checkin",
             "event_id": "evt-1", "issued_at_ms": 1, "security_level": "basic"},
            SECRET, algorithm="HS256",
        )
        assert not verify_integrity(CheckInToken("evt-1", 1, "basic", forged), SECRET)

    def test_wrong_scope_fails(self):
        forged = jwt.encode(
            {"aud": QR_AUD, "iss": "geo-checkin-svc", "jti": "x", "scope": "login",
             "event_id": "evt-1", "issued_at_ms": 1, "security_level": "basic"},
            SECRET, algorithm="HS256",
        )
        assert not verify_integrity(CheckInToken("evt-1", 1, "basic", forged), SECRET)
