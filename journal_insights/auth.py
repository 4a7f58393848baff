"""
Cognito JWT 認証

API Gateway の Authorizer で検証済みの場合はそのクレームを使い、
それ以外は Authorization ヘッダーの Bearer トークンを検証する
"""
import base64
import json
import logging
import os
import urllib.error
import urllib.request
from functools import lru_cache
from typing import Dict, Optional

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import Request

from .errors import AuthError

logger = logging.getLogger(__name__)

DEV_USER_ID = "test-user"


def _cognito_issuer() -> str:
    region = os.environ.get("AWS_REGION", "us-east-1")
    user_pool_id = os.environ.get("COGNITO_USER_POOL_ID", "")
    return f"https://cognito-idp.{region}.amazonaws.com/{user_pool_id}"


@lru_cache(maxsize=1)
def get_jwks() -> Dict:
    """
    Cognito の公開鍵（JWKS）を取得してキャッシュ

    Returns:
        JWKS データ
    """
    jwks_url = f"{_cognito_issuer()}/.well-known/jwks.json"
    try:
        with urllib.request.urlopen(jwks_url, timeout=5) as response:
            return json.loads(response.read().decode("utf-8"))
    except (urllib.error.URLError, ValueError) as e:
        logger.warning("Failed to fetch JWKS from %s: %s", jwks_url, e)
        return {"keys": []}


def _b64_to_int(value: str) -> int:
    padded = value + "=" * (-len(value) % 4)
    return int.from_bytes(base64.urlsafe_b64decode(padded), "big")


def _public_key_for(kid: str):
    """JWKS から kid に対応する RSA 公開鍵を再構築"""
    for jwk_key in get_jwks().get("keys", []):
        if jwk_key.get("kid") == kid:
            numbers = rsa.RSAPublicNumbers(_b64_to_int(jwk_key["e"]), _b64_to_int(jwk_key["n"]))
            return numbers.public_key()
    return None


def verify_token(token: str) -> Dict:
    """
    JWT トークンを検証し、デコードされたトークン情報を返す

    Args:
        token: JWT トークン文字列

    Returns:
        デコードされたトークンのクレーム

    Raises:
        AuthError: トークンが無効な場合
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except jwt.PyJWTError as e:
        raise AuthError("Invalid token") from e

    kid = unverified_header.get("kid")
    if not kid:
        raise AuthError("Invalid token header")

    key = _public_key_for(kid)
    if key is None:
        raise AuthError("Public key not found")

    try:
        return jwt.decode(
            token,
            key,
            algorithms=["RS256"],
            audience=os.environ.get("COGNITO_CLIENT_ID", ""),
            issuer=_cognito_issuer(),
        )
    except jwt.PyJWTError as e:
        raise AuthError("Invalid token") from e


def user_id_from_claims(claims: Dict) -> Optional[str]:
    return claims.get("sub") or claims.get("cognito:username") or claims.get("username")


def _gateway_claims(request: Request) -> Dict:
    """Mangum 経由の場合、API Gateway Authorizer のクレームを取得"""
    event = request.scope.get("aws.event") or {}
    authorizer = event.get("requestContext", {}).get("authorizer") or {}
    # REST API は authorizer.claims、HTTP API は authorizer.jwt.claims
    return authorizer.get("claims") or (authorizer.get("jwt") or {}).get("claims") or {}


def get_current_user(request: Request) -> str:
    """
    認証済みユーザーIDを返す FastAPI 依存関数

    Raises:
        AuthError: 認証情報がない、または無効な場合
    """
    user_id = user_id_from_claims(_gateway_claims(request))
    if user_id:
        return user_id

    auth_header = request.headers.get("Authorization")
    if auth_header:
        scheme, _, token = auth_header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthError("Invalid authorization header")
        user_id = user_id_from_claims(verify_token(token.strip()))
        if not user_id:
            raise AuthError("Token has no subject")
        return user_id

    # ローカル開発用バイパスが明示的に許可されている場合のみ
    if os.environ.get("ALLOW_DEV_AUTH_BYPASS", "").lower() == "true":
        logger.warning("No credentials, using development bypass as '%s'", DEV_USER_ID)
        return DEV_USER_ID

    raise AuthError("Missing authorization header")
