from abc import ABC, abstractmethod

from jose import JWTError, jwt

from ticketmarket.domain.exceptions import AuthenticationError

ALGO = "HS256"


class TokenVerifier(ABC):
    """Resolves a bearer token to the principal's email."""

    @abstractmethod
    def verify(self, token: str) -> str: ...


class JwtTokenVerifier(TokenVerifier):

    def __init__(self, secret_key: str, algorithms: tuple[str, ...] = (ALGO,)):
        self.secret_key = secret_key
        self.algorithms = list(algorithms)

    def verify(self, token: str) -> str:
        if not self.secret_key:
            raise AuthenticationError("Token verification is not configured")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=self.algorithms)
        except JWTError as exc:
            raise AuthenticationError("Invalid token") from exc

        email = payload.get("email") or payload.get("sub")
        if not email:
            raise AuthenticationError("Token carries no principal")
        return email
