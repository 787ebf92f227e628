from dataclasses import asdict, dataclass
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


class NotAuthenticated(Exception):
    pass


@dataclass(frozen=True)
class IdentityClaims:
    sub: str
    name: Optional[str] = None
    email: Optional[str] = None
    picture: Optional[str] = None


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.identity_secret, salt="identity-token")


def issue_identity_token(claims: IdentityClaims) -> str:
    return _serializer().dumps(asdict(claims))


def read_identity_token(token: str) -> Optional[IdentityClaims]:
    settings = get_settings()
    try:
        data = _serializer().loads(
            token, max_age=settings.identity_max_age_hours * 3600
        )
    except BadSignature:
        return None

    if not isinstance(data, dict) or not data.get("sub"):
        return None

    return IdentityClaims(
        sub=str(data["sub"]),
        name=data.get("name"),
        email=data.get("email"),
        picture=data.get("picture"),
    )


def identity_from_header(authorization: Optional[str]) -> Optional[IdentityClaims]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return read_identity_token(token.strip())


def require_user(user_id: Optional[int]) -> int:
    if user_id is None:
        raise NotAuthenticated("Not authenticated")
    return user_id
