"""
API dependencies (auth, shared DI).

Session bridge with the Next.js frontend:
- Validates the shared API token from the Authorization header
- Reads the signed-in user's email from X-User-Email
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from pdfapp.billing.lookup import find_user_by_email
from pdfapp.billing.stripe_gateway import StripeGateway
from pdfapp.core.config import settings
from pdfapp.db.models.user import User
from pdfapp.db.session import get_db


def get_billing_gateway(request: Request) -> StripeGateway:
    return request.app.state.billing_gateway


def get_current_email(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
    x_user_email: Optional[str] = Header(default=None, alias="X-User-Email"),
) -> str:
    api_token = settings.API_TOKEN

    if not api_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Auth not configured",
        )

    if not authorization or authorization.strip() != f"Bearer {api_token}":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    email = (x_user_email or "").strip()
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Email header required",
        )
    return email


def get_current_user(
    email: str = Depends(get_current_email),
    db: Session = Depends(get_db),
) -> User:
    user = find_user_by_email(db, email)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def verify_admin(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
) -> None:
    admin_token = (settings.ADMIN_TOKEN or "").strip()
    if not admin_token:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=401, detail="Unauthorized")
