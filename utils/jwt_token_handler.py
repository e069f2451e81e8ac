from datetime import timedelta, datetime
from pydantic import BaseModel
from typing import Optional
import jwt
import http
import os
from fastapi import HTTPException

from context_manager.context import context_user_data
from logger import logger


# schema
class UserDataModel(BaseModel):
    id: int
    client_id: int
    email: Optional[str] = None
    status: str = "active"

    def __str__(self):
        return "user={} client={}".format(self.id, self.client_id)


# JWT configuration
class JWTToken:
    algorithm = os.getenv("JWT_ALGORITHM", "HS256")
    secret = os.getenv("JWT_SECRET", "secret_key")
    access_token_expire_minutes = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "300"))


class JWTHandler:
    @staticmethod
    def create_access_token(to_encode: dict, expires_delta: Optional[timedelta] = None):
        user_data = to_encode.copy()
        if "status" not in user_data:
            user_data["status"] = "active"

        expire = datetime.now() + (
            expires_delta or timedelta(minutes=JWTToken.access_token_expire_minutes)
        )
        user_data.update({"exp": expire.timestamp()})
        encoded_jwt = jwt.encode(
            user_data, JWTToken.secret, algorithm=JWTToken.algorithm
        )

        return encoded_jwt

    @staticmethod
    def decode_access_token(token: str) -> UserDataModel:
        try:
            payload = jwt.decode(
                token, JWTToken.secret, algorithms=[JWTToken.algorithm]
            )
            user_data = UserDataModel(**payload)

        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=http.HTTPStatus.UNAUTHORIZED,
                detail={"message": "Token has expired", "status": False},
            )
        except Exception as e:
            logger.error(
                extra=context_user_data.get(),
                msg=f"Error while decoding access token: {e}",
            )
            raise HTTPException(
                status_code=http.HTTPStatus.UNAUTHORIZED,
                detail={
                    "message": "Invalid authentication credentials",
                    "status": False,
                },
            )

        if user_data.status != "active":
            raise HTTPException(
                status_code=http.HTTPStatus.FORBIDDEN,
                detail={
                    "message": "Account is not active. Please contact support.",
                    "status": False,
                },
            )

        context_user_data.set(user_data)
        return user_data
