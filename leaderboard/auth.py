from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from typing import Optional
import hashlib
import hmac
import logging
import os
import secrets

from leaderboard.data_access import DataAccess, PlayerNotFoundError, UsernameTakenError, get_data_access
from leaderboard.ratings import RatingModel, get_rating_model, load_standing
from leaderboard.schemas import Credentials, IdentityResponse, PlayerResponse, TokenResponse

logger = logging.getLogger(__name__)

# ✅ Get secrets from environment variables
SECRET_KEY = os.getenv("SECRET_KEY", "fallback_key")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))

# auto_error=False so anonymous requests reach get_current_identity as None
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)

# ✅ Load Admin Credentials Securely
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "password123")

PBKDF2_ITERATIONS = 200_000


@dataclass(frozen=True)
class Identity:
    sub: str
    username: str
    role: str

    @property
    def is_admin(self):
        return self.role == "admin"


# ✅ Password helpers
def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        _, iterations, salt, expected = stored.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


# ✅ Auth functions
def create_access_token(data: dict, expires_delta: timedelta):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def token_for(sub: str, username: str, role: str = "player") -> str:
    token_data = {"sub": sub, "username": username, "role": role}
    return create_access_token(token_data, timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))


async def get_current_identity(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[Identity]:
    """The authenticated identity behind the bearer token, or None if there is no token."""
    if token is None:
        return None

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"JWT decode error: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return Identity(sub=sub, username=payload.get("username", sub), role=payload.get("role", "player"))


async def require_identity(identity: Optional[Identity] = Depends(get_current_identity)) -> Identity:
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Login to submit results",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def is_admin(identity: Identity = Depends(require_identity)) -> Identity:
    if not identity.is_admin:
        logger.info(f"Access denied for {identity.username}: role is not admin")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access forbidden: Admins only")
    return identity


# ✅ Endpoints
router = APIRouter()


@router.post("/signup", response_model=TokenResponse)
async def signup(credentials: Credentials, data: DataAccess = Depends(get_data_access)):
    if credentials.username == ADMIN_USERNAME:
        raise HTTPException(status_code=409, detail="Username is reserved")

    try:
        user = await data.create_user(credentials.username, hash_password(credentials.password))
    except UsernameTakenError:
        raise HTTPException(status_code=409, detail="Username already taken")

    logger.info(f"User signed up: {user.username}")
    return TokenResponse(access_token=token_for(user.id, user.username))


@router.post("/token", response_model=TokenResponse)
async def login_token(form_data: OAuth2PasswordRequestForm = Depends(), data: DataAccess = Depends(get_data_access)):
    if form_data.username == ADMIN_USERNAME:
        if not hmac.compare_digest(form_data.password, ADMIN_PASSWORD):
            raise HTTPException(status_code=401, detail="Invalid credentials")
        return TokenResponse(access_token=token_for(ADMIN_USERNAME, ADMIN_USERNAME, role="admin"))

    user = await data.get_user_by_username(form_data.username)
    if not user or not verify_password(form_data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenResponse(access_token=token_for(user.id, user.username))


@router.get("/me", response_model=IdentityResponse)
async def me(
    identity: Identity = Depends(require_identity),
    data: DataAccess = Depends(get_data_access),
    model: RatingModel = Depends(get_rating_model),
):
    try:
        player = PlayerResponse.from_standing(await load_standing(data, model, identity.sub))
    except PlayerNotFoundError:
        player = None  # profile not set up yet

    return IdentityResponse(id=identity.sub, username=identity.username, role=identity.role, player=player)
