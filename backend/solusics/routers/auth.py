"""Tenant login: one OAuth2 password route issuing the bearer JWT the WhatsApp routes require"""
from datetime import datetime, timedelta
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from solusics.core.config import settings
from solusics.core.db import get_db
from solusics.models.user import User
from solusics.schemas.auth import Token

router = APIRouter(prefix='/auth', tags=['auth'])

pwd_context = CryptContext(schemes=['bcrypt'], deprecated='auto')
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f'{settings.API_V1_PREFIX}/auth/token')

CREDENTIALS_HEADERS = {'WWW-Authenticate': 'Bearer'}


def authenticate_tenant(db: Session, username: str, password: str):
    """Active tenant login matching the credentials, or None"""
    user = db.query(User).filter(User.username == username).first()
    if user is None or not user.is_active:
        return None
    if not pwd_context.verify(password, user.hashed_password):
        return None
    return user


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({'exp': expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def get_current_user(token: Annotated[str, Depends(oauth2_scheme)], db: Session = Depends(get_db)) -> User:
    """Tenant owning the bearer token; every WhatsApp route acts on this user's profile"""
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail='Could not validate credentials',
        headers=CREDENTIALS_HEADERS,
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise unauthorized
    username = payload.get('sub')
    if not username:
        raise unauthorized
    user = db.query(User).filter(User.username == username).first()
    if user is None or not user.is_active:
        raise unauthorized
    return user


@router.post('/token', response_model=Token)
async def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: Session = Depends(get_db)
):
    user = authenticate_tenant(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Incorrect username or password',
            headers=CREDENTIALS_HEADERS,
        )
    return {'access_token': create_access_token({'sub': user.username}), 'token_type': 'bearer'}


@router.get('/me')
async def read_tenant(current_user: Annotated[User, Depends(get_current_user)]):
    return {'id': current_user.id, 'username': current_user.username, 'is_active': current_user.is_active}
