"""Security related functions."""

import jwt
from fastapi import HTTPException, status
from jwt import InvalidTokenError

from app.core.config import settings


class TokenDecoder:
    """
    Decodes bearer tokens issued by the identity provider.

    The messenger only needs the subject claim. Signatures are verified
    against ``settings.secret_key`` when ``settings.verify_token_signature``
    is enabled; otherwise the claims are read without verification, which
    is only appropriate behind a gateway that already validated the token.
    """

    def __init__(self):
        self.secret_key = settings.secret_key
        self.algorithm = settings.algorithm

    def verify_token(self, token: str) -> dict:
        """
        Decode a JWT and return its payload.

        :param token: The encoded JWT.
        :return: The decoded claims.
        :raises HTTPException: 401 when the token cannot be decoded or verified.
        """
        try:
            if settings.verify_token_signature:
                return jwt.decode(
                    token,
                    key=self.secret_key,
                    algorithms=[self.algorithm],
                    options={"verify_aud": False},
                )
            return jwt.decode(
                token,
                options={
                    "verify_signature": False,
                    "verify_aud": False,
                    "verify_exp": False,
                },
            )
        except InvalidTokenError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid authentication token: {str(e)}",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e
