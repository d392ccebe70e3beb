import os

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ticketmarket.domain.exceptions import AuthenticationError, GatewayConfigurationError
from ticketmarket.infrastructure.auth.token_verifier import JwtTokenVerifier, TokenVerifier
from ticketmarket.infrastructure.db.session import SessionLocal
from ticketmarket.infrastructure.gateway.payment_gateway import PaymentGateway
from ticketmarket.infrastructure.gateway.razorpay_gateway import gateway_from_env

bearer = HTTPBearer(auto_error=False)

UNAUTHORIZED = {"errorCode": 401, "message": "Unauthorized Access"}


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_payment_gateway() -> PaymentGateway:
    try:
        return gateway_from_env()
    except GatewayConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc


def get_token_verifier() -> TokenVerifier:
    return JwtTokenVerifier(os.getenv("AUTH_SECRET_KEY", ""))


def get_current_email(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> str:
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)
    try:
        return verifier.verify(creds.credentials)
    except AuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED) from exc
