"""
认证服务
基于 JWT 的无状态用户认证；用户以邮箱注册，密码以加盐 PBKDF2 哈希存储。
"""

import hashlib
import hmac
import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from dashboard_service.config import settings
from dashboard_service.db.repositories import PortfolioRepository, UserRepository
from dashboard_service.errors import ConflictError, InvalidRequestError, NotFoundError
from dashboard_service.models.schemas import Portfolio, User

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PBKDF2_ITERATIONS = 260_000
MIN_PASSWORD_LENGTH = 6


class TokenPayload(BaseModel):
    sub: str
    exp: int


class AuthService:
    """用户认证服务"""

    def __init__(
        self,
        users: Optional[UserRepository] = None,
        portfolios: Optional[PortfolioRepository] = None,
    ):
        self._users = users or UserRepository()
        self._portfolios = portfolios or PortfolioRepository()

    # ── 密码 ──────────────────────────────────────────────

    @staticmethod
    def hash_password(password: str, salt: Optional[str] = None) -> str:
        """返回 'pbkdf2_sha256$迭代次数$salt$hex' 格式的哈希"""
        salt = salt or secrets.token_hex(16)
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode(), salt.encode(), _PBKDF2_ITERATIONS
        ).hex()
        return f"pbkdf2_sha256${_PBKDF2_ITERATIONS}${salt}${digest}"

    @staticmethod
    def verify_password(password: str, encoded: str) -> bool:
        try:
            algorithm, iterations, salt, digest = encoded.split("$")
        except ValueError:
            return False
        if algorithm != "pbkdf2_sha256" or not iterations.isdigit():
            return False
        candidate = hashlib.pbkdf2_hmac(
            "sha256", password.encode(), salt.encode(), int(iterations)
        ).hex()
        return hmac.compare_digest(candidate, digest)

    # ── Token ─────────────────────────────────────────────

    @staticmethod
    def create_access_token(user_id: str) -> str:
        expire = datetime.now(tz=timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
        payload = {"sub": user_id, "exp": expire}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Optional[TokenPayload]:
        try:
            payload = jwt.decode(
                token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
            )
            return TokenPayload(sub=payload["sub"], exp=int(payload["exp"]))
        except jwt.ExpiredSignatureError:
            logger.debug("Token 已过期")
        except (jwt.InvalidTokenError, KeyError) as exc:
            logger.debug(f"Token 无效: {exc}")
        return None

    # ── 用户管理 ──────────────────────────────────────────

    async def signup(self, email: str, password: str, name: str) -> User:
        """注册用户并创建初始模拟账户"""
        email = (email or "").strip().lower()
        name = (name or "").strip()
        if not _EMAIL_RE.match(email):
            raise InvalidRequestError("Invalid email address")
        if not name:
            raise InvalidRequestError("Name is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise InvalidRequestError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if await self._users.get_credentials(email) is not None:
            raise ConflictError("User already exists")

        now = datetime.now(tz=timezone.utc)
        user = User(id=uuid.uuid4().hex, email=email, name=name, created_at=now)
        try:
            await self._users.create(user, self.hash_password(password))
        except DuplicateKeyError as exc:
            raise ConflictError("User already exists") from exc
        await self._portfolios.insert(Portfolio(
            id=uuid.uuid4().hex,
            user_id=user.id,
            total_value=settings.PAPER_STARTING_CASH,
            cash_balance=settings.PAPER_STARTING_CASH,
            created_at=now,
        ))
        logger.info(f"新用户注册: {user.id}")
        return user

    async def authenticate(self, email: str, password: str) -> Optional[User]:
        """验证邮箱密码，成功返回用户"""
        doc = await self._users.get_credentials((email or "").strip().lower())
        if doc is None or not self.verify_password(password, doc.get("password_hash", "")):
            return None
        return User.model_validate(doc)

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self._users.get_by_id(user_id)

    async def update_profile(
        self, user_id: str, name: Optional[str], email: Optional[str], theme: Optional[str] = None
    ) -> User:
        """修改姓名与邮箱（必填），主题未指定时保持不变；邮箱不能与其他用户重复"""
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name or not email:
            raise InvalidRequestError("Name and email are required")
        if not _EMAIL_RE.match(email):
            raise InvalidRequestError("Invalid email format")
        owner = await self._users.get_credentials(email)
        if owner is not None and owner.get("id") != user_id:
            raise ConflictError("Email already in use")

        fields = {"name": name, "email": email}
        if theme:
            fields["theme"] = theme
        try:
            user = await self._users.update(user_id, **fields)
        except DuplicateKeyError as exc:
            raise ConflictError("Email already in use") from exc
        if user is None:
            raise NotFoundError("User not found")
        logger.info(f"用户资料已更新: {user_id}")
        return user


# ── 模块级别单例 ──────────────────────────────────────────
_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service
