import time

import jwt

from oncalls_mcp_server.auth.jwt_utils import looks_like_jwt, seconds_until_expiry
from oncalls_mcp_server.auth.models import Identity


def create_token(exp_offset=None, secret="issuer-secret-we-never-see-in-production"):
    now = int(time.time())
    payload = {"sub": "42", "iat": now, "group_id": 12}
    if exp_offset is not None:
        payload["exp"] = now + exp_offset
    return jwt.encode(payload, secret, algorithm="HS256")


def test_signed_token_looks_like_jwt():
    assert looks_like_jwt(create_token())


def test_base64_credentials_do_not_look_like_jwt():
    assert not looks_like_jwt("U3RldHplcjowOTAw")
    assert not looks_like_jwt("")
    assert not looks_like_jwt("a.b")


def test_expiry_read_without_verification():
    remaining = seconds_until_expiry(create_token(exp_offset=900))
    assert 890 <= remaining <= 900


def test_expired_token_reports_zero():
    assert seconds_until_expiry(create_token(exp_offset=-60)) == 0


def test_token_without_exp():
    assert seconds_until_expiry(create_token()) is None


def test_undecodable_token():
    assert seconds_until_expiry("aaa.bbb.ccc") is None


def test_identity_from_login_payload():
    identity = Identity.from_login_payload("Stetzer", {
        "docid": "7", "GroupId": 12, "fname": "Anna", "lname": "Stetzer",
        "user_email": "stetzer@example.org", "Admin": 1, "viewReqs": 0,
    })

    assert identity.doc_id == 7
    assert identity.is_admin is True
    assert identity.view_requests is False
    assert identity.display_name == "Anna Stetzer"


def test_identity_from_userinfo():
    identity = Identity.from_userinfo({
        "sub": "42", "group_id": 12, "given_name": "Olivia", "family_name": "Auth",
        "email": "olivia@example.org", "is_admin": True,
    })

    assert identity.doc_id == 42
    assert identity.username == "olivia@example.org"
    assert identity.view_requests is True
