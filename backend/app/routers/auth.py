from datetime import datetime, timedelta, timezone
from typing import Optional
import hmac
import logging

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from ..settings import settings

router = APIRouter(prefix="/api/admin", tags=["admin"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_SUBJECT = "admin"


class AdminLoginRequest(BaseModel):
	password: str


class Token(BaseModel):
	success: bool = True
	token: str
	token_type: str = "bearer"


def verify_admin_password(password: str) -> bool:
	expected = settings.admin_password
	if not expected:
		return False
	# ADMIN_PASSWORD may be stored either as plain text or as a bcrypt hash
	if pwd_context.identify(expected):
		return pwd_context.verify(password, expected)
	return hmac.compare_digest(password.encode("utf-8"), expected.encode("utf-8"))


def create_admin_token(expires_delta: Optional[timedelta] = None, now: Optional[datetime] = None) -> str:
	delta = expires_delta or timedelta(minutes=settings.admin_token_expire_minutes)
	issued = now or datetime.now(timezone.utc)
	to_encode = {"sub": ADMIN_SUBJECT, "iat": issued, "exp": issued + delta}
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@router.post("/auth", response_model=Token)
async def login(req: AdminLoginRequest):
	if not settings.admin_password:
		logger.error("ADMIN_PASSWORD environment variable not set")
		raise HTTPException(status_code=500, detail="Server configuration error")
	if not verify_admin_password(req.password):
		raise HTTPException(status_code=401, detail="Invalid password")
	return Token(token=create_admin_token())


def require_admin(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
	credentials_exception = HTTPException(status_code=401, detail="Unauthorized")
	if credentials is None or credentials.scheme.lower() != "bearer":
		raise credentials_exception
	try:
		payload = jwt.decode(credentials.credentials, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		# Covers bad signatures and expired tokens
		raise credentials_exception
	if payload.get("sub") != ADMIN_SUBJECT:
		raise credentials_exception
	return ADMIN_SUBJECT
