import datetime

from gatepass.core.security import sign_payload
from gatepass.services.pass_codec import (
    PassWindow,
    build_verification_token,
    derive_security_code,
    verify_token,
)


SECRET = "codec-secret-for-tests-0123456789"
ISSUED = datetime.datetime(2026, 10, 18, 9, 0, tzinfo=datetime.timezone.utc)
WINDOW = PassWindow(
    departure_time=ISSUED + datetime.timedelta(hours=2),
    return_time=ISSUED + datetime.timedelta(hours=4),
)


def _token(**overrides) -> str:
    kwargs = dict(
        pass_id="pass-123",
        student_id="stu-1",
        category="medical",
        window=WINDOW,
        status="approved",
        code=derive_security_code("pass-123", SECRET),
        secret=SECRET,
        now=ISSUED,
    )
    kwargs.update(overrides)
    return build_verification_token(**kwargs)


def test_security_code_is_deterministic_short_uppercase():
    code = derive_security_code("pass-123", SECRET)
    assert code == derive_security_code("pass-123", SECRET)
    assert len(code) == 8
    assert code == code.upper()
    assert code.isalnum()
    assert code != derive_security_code("pass-124", SECRET)
    assert code != derive_security_code("pass-123", SECRET + "x")


def test_token_round_trip_returns_original_fields():
    token = _token()
    check = verify_token(token, SECRET, now=ISSUED + datetime.timedelta(hours=1))
    assert check.valid, check.reason
    claims = check.claims
    assert claims.pass_id == "pass-123"
    assert claims.student_id == "stu-1"
    assert claims.category == "medical"
    assert claims.status == "approved"
    assert claims.security_code == derive_security_code("pass-123", SECRET)
    assert claims.window == WINDOW
    assert claims.issued_at == ISSUED
    assert claims.expires_at == ISSUED + datetime.timedelta(hours=24)


def test_flipped_signature_fails():
    token = _token()
    header, payload, signature = token.split(".")
    mid = len(signature) // 2
    flipped = "A" if signature[mid] != "A" else "B"
    tampered = ".".join([header, payload, signature[:mid] + flipped + signature[mid + 1 :]])
    check = verify_token(tampered, SECRET, now=ISSUED)
    assert not check.valid
    assert check.reason == "invalid_signature"
    assert check.claims is None


def test_wrong_secret_is_invalid_signature():
    check = verify_token(_token(), "another-secret-0123456789", now=ISSUED)
    assert not check.valid
    assert check.reason == "invalid_signature"


def test_expired_after_24_hours():
    token = _token()
    assert verify_token(token, SECRET, now=ISSUED + datetime.timedelta(hours=23, minutes=59)).valid
    check = verify_token(token, SECRET, now=ISSUED + datetime.timedelta(hours=24))
    assert not check.valid
    assert check.reason == "expired"
    assert check.claims.pass_id == "pass-123"


def test_code_bound_to_other_pass_is_rejected():
    token = _token(code=derive_security_code("someone-else", SECRET))
    check = verify_token(token, SECRET, now=ISSUED)
    assert not check.valid
    assert check.reason == "code_mismatch"


def test_malformed_tokens_do_not_raise():
    for token in ["", "abc", "a.b", "a.b.c.d", "!!!.@@@.###"]:
        check = verify_token(token, SECRET, now=ISSUED)
        assert not check.valid
        assert check.reason in {"malformed", "invalid_signature"}


def test_signed_payload_missing_fields_is_malformed():
    token = sign_payload({"pass_id": "pass-123"}, SECRET)
    check = verify_token(token, SECRET, now=ISSUED)
    assert not check.valid
    assert check.reason == "malformed"
