import pytest

from identity import (
    IdentityClaims,
    NotAuthenticated,
    identity_from_header,
    issue_identity_token,
    read_identity_token,
    require_user,
)


def test_bearer_header_round_trip() -> None:
    claims = IdentityClaims(sub="abc", name="Ana", email="a@x.io")
    token = issue_identity_token(claims)

    assert identity_from_header(f"Bearer {token}") == claims
    assert identity_from_header(f"bearer   {token}") == claims


@pytest.mark.parametrize(
    "header",
    [None, "", "Bearer", "Bearer ", "Basic abc", "Token xyz"],
)
def test_malformed_headers_are_anonymous(header) -> None:
    assert identity_from_header(header) is None


def test_tampered_token_is_rejected() -> None:
    token = issue_identity_token(IdentityClaims(sub="abc"))
    assert read_identity_token(token + "x") is None
    assert read_identity_token("garbage") is None


def test_require_user() -> None:
    assert require_user(7) == 7
    with pytest.raises(NotAuthenticated):
        require_user(None)
