import time

import jwt
import pytest

from salesdesk import auth


def test_password_hash_roundtrip():
    hashed = auth.hash_password("s3cret!")
    assert hashed != "s3cret!"
    assert auth.verify_password("s3cret!", hashed)
    assert not auth.verify_password("wrong", hashed)


def test_access_token_claims():
    token = auth.create_access_token(7, "user")
    claims = auth.decode_access_token(token)
    assert claims["iss"] == "salesdesk"
    assert claims["typ"] == "access"
    assert claims["sub"] == "7"
    assert claims["role"] == "user"
    assert claims["exp"] - claims["iat"] == auth.TOKEN_TTL
    assert auth.principal_id_from_token(token) == 7


def test_token_from_another_issuer_is_rejected():
    now = int(time.time())
    token = jwt.encode({"iss": "elsewhere", "sub": "7", "typ": "access", "exp": now + 60},
                       auth.SECRET, algorithm=auth.ALGORITHM)
    with pytest.raises(jwt.InvalidIssuerError):
        auth.decode_access_token(token)


def test_token_without_subject_or_wrong_type_is_rejected():
    now = int(time.time())
    no_sub = jwt.encode({"iss": "salesdesk", "typ": "access", "exp": now + 60}, auth.SECRET, algorithm=auth.ALGORITHM)
    with pytest.raises(jwt.MissingRequiredClaimError):
        auth.decode_access_token(no_sub)
    refresh = jwt.encode({"iss": "salesdesk", "sub": "7", "typ": "refresh", "exp": now + 60},
                         auth.SECRET, algorithm=auth.ALGORITHM)
    with pytest.raises(jwt.InvalidTokenError):
        auth.decode_access_token(refresh)


def test_expired_token_is_rejected():
    token = auth.create_access_token(7, "user", expires_delta=-10)
    with pytest.raises(jwt.ExpiredSignatureError):
        auth.decode_access_token(token)
