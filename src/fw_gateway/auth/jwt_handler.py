"""JWT verification for tokens issued by the identity service.

The core never authenticates users itself; it trusts HS256 access tokens signed
with the shared JWT_SECRET and reads two claims:
  - sub:  user id
  - role: "customer" | "fundi" | "admin"

create_access_token exists for local tooling and tests.
"""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from config.settings import settings
from src.fw_common.actor import Actor
from src.fw_common.enums import Role
from src.fw_common.errors import AuthenticationError

_ALGORITHM = settings.JWT_ALGORITHM
_ACCESS_EXPIRE = timedelta(minutes=settings.JWT_EXPIRE_MINUTES)

# The system role is internal only and never accepted from a token
_TOKEN_ROLES = {Role.CUSTOMER, Role.FUNDI, Role.ADMIN}


def create_access_token(user_id: str, role: Role) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "role": role.value,
        "type": "access",
        "iat": now,
        "exp": now + _ACCESS_EXPIRE,
    }
    return str(jwt.encode(payload, settings.JWT_SECRET, algorithm=_ALGORITHM))


def decode_token(token: str) -> dict[str, str]:
    """Decode and validate an access token.

    Raises:
        AuthenticationError: signature invalid, token expired, or wrong type.
    """
    try:
        payload: dict[str, str] = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[_ALGORITHM],  # Explicit list prevents algorithm confusion
        )
    except JWTError:
        raise AuthenticationError() from None

    if payload.get("type") != "access":
        raise AuthenticationError()
    return payload


def actor_from_token(token: str) -> Actor:
    payload = decode_token(token)
    user_id = payload.get("sub")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise AuthenticationError() from None
    if not user_id or role not in _TOKEN_ROLES:
        raise AuthenticationError()
    return Actor(user_id=str(user_id), role=role)
