import logging
from typing import Dict, Optional

import requests
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .cart import session_cart_key, user_cart_key
from .config import ADMIN_EMAILS, AUTH_SERVICE_URL
from .errors import Unauthorized

logger = logging.getLogger(__name__)

# Security scheme for Bearer token
security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def resolve_token(token: str) -> Dict:
    """Ask the auth provider who owns ``token``."""
    try:
        response = requests.get(
            f"{AUTH_SERVICE_URL}/auth/v1/user",
            headers={"Authorization": f"Bearer {token}"},
            timeout=5,
        )
    except requests.exceptions.RequestException as e:
        logger.warning("auth provider unreachable: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Auth provider is unavailable: {str(e)}",
        )

    if response.status_code == 200:
        user_data = response.json()
        return {
            "id": str(user_data["id"]),
            "email": (user_data.get("email") or "").lower(),
            "is_admin": bool(user_data.get("is_admin", False)),
        }
    elif response.status_code in (401, 403):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    else:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to get user from auth provider: {response.text}",
        )


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict:
    return resolve_token(credentials.credentials)


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> Optional[Dict]:
    if credentials is None:
        return None
    return resolve_token(credentials.credentials)


def is_admin(user: Dict) -> bool:
    return bool(user.get("is_admin")) or user.get("email", "").lower() in ADMIN_EMAILS


def get_current_admin(current_user: Dict = Depends(get_current_user)) -> Dict:
    if not is_admin(current_user):
        raise Unauthorized("Not enough permissions. Admin access required.")
    return current_user


def get_cart_owner(
    current_user: Optional[Dict] = Depends(get_optional_user),
    x_cart_session: Optional[str] = Header(None),
) -> str:
    """Owner key of the cart this request acts on.

    Signed-in shoppers always use their user cart; anonymous shoppers must
    send the ``X-Cart-Session`` header.
    """
    if current_user is not None:
        return user_cart_key(current_user["id"])
    if not x_cart_session:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sign in or send an X-Cart-Session header",
        )
    return session_cart_key(x_cart_session)
