"""
Identification de l'acteur à partir du jeton Bearer.

Les jetons sont émis par le service d'authentification ; ici on vérifie seulement
la signature et on lit les claims `sub` (identifiant) et `role`
(LABOUR, SITE_ENGINEER, ...).
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError

from app.config import settings
from app.schemas.sync import Actor

http_bearer = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Jeton expiré.")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Jeton invalide.")


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(http_bearer),
) -> Actor:
    """Dépendance FastAPI — retourne l'acteur authentifié ou lève 401."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentification requise.")

    claims = decode_token(credentials.credentials)
    try:
        return Actor(id=claims.get("sub"), role=claims.get("role"))
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Jeton invalide.")
