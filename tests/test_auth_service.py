"""认证服务测试"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from dashboard_service.config import settings
from dashboard_service.db.repositories import PortfolioRepository, UserRepository
from dashboard_service.errors import ConflictError, InvalidRequestError, NotFoundError
from dashboard_service.services.auth_service import AuthService


@pytest.fixture
def service(memory_store):
    return AuthService(
        users=UserRepository(store=memory_store),
        portfolios=PortfolioRepository(store=memory_store),
    )


class TestPasswords:
    def test_hash_and_verify(self):
        encoded = AuthService.hash_password("secret1")
        assert encoded.startswith("pbkdf2_sha256$")
        assert AuthService.verify_password("secret1", encoded)
        assert not AuthService.verify_password("secret2", encoded)

    def test_salted(self):
        assert AuthService.hash_password("same") != AuthService.hash_password("same")

    @pytest.mark.parametrize("encoded", ["", "plain", "md5$1$s$d", "pbkdf2_sha256$abc$s$d"])
    def test_malformed_hash(self, encoded):
        assert not AuthService.verify_password("x", encoded)


class TestTokens:
    def test_roundtrip(self):
        token = AuthService.create_access_token("user-1")
        payload = AuthService.verify_token(token)
        assert payload.sub == "user-1"

    def test_expired(self):
        token = jwt.encode(
            {"sub": "u", "exp": datetime.now(tz=timezone.utc) - timedelta(minutes=1)},
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
        )
        assert AuthService.verify_token(token) is None

    def test_wrong_secret(self):
        token = jwt.encode({"sub": "u", "exp": 9_999_999_999}, "other-secret", algorithm="HS256")
        assert AuthService.verify_token(token) is None

    def test_missing_sub(self):
        token = jwt.encode({"exp": 9_999_999_999}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
        assert AuthService.verify_token(token) is None


class TestSignup:
    async def test_signup_creates_portfolio(self, service, memory_store):
        user = await service.signup("Alice@Example.com ", "secret1", "Alice")
        assert user.email == "alice@example.com"
        portfolio = await memory_store.find_one("portfolios", {"user_id": user.id})
        assert portfolio["cash_balance"] == settings.PAPER_STARTING_CASH
        stored = await memory_store.find_one("users", {"id": user.id})
        assert stored["password_hash"] != "secret1"

    async def test_duplicate_email(self, service):
        await service.signup("bob@example.com", "secret1", "Bob")
        with pytest.raises(ConflictError):
            await service.signup("BOB@example.com", "secret2", "Bobby")

    @pytest.mark.parametrize("email, password, name", [
        ("not-an-email", "secret1", "X"),
        ("x@example.com", "12345", "X"),
        ("x@example.com", "secret1", "  "),
    ])
    async def test_invalid_input(self, service, email, password, name):
        with pytest.raises(InvalidRequestError):
            await service.signup(email, password, name)

    async def test_authenticate(self, service):
        user = await service.signup("carol@example.com", "secret1", "Carol")
        assert (await service.authenticate("carol@example.com", "secret1")).id == user.id
        assert await service.authenticate("carol@example.com", "wrong") is None
        assert await service.authenticate("nobody@example.com", "secret1") is None
        assert (await service.get_user(user.id)).name == "Carol"


class TestProfile:
    async def test_update_profile(self, service):
        user = await service.signup("dave@example.com", "secret1", "Dave")
        assert user.theme == "dark"
        updated = await service.update_profile(user.id, " David ", "David@Example.com", "light")
        assert updated.name == "David"
        assert updated.email == "david@example.com"
        assert updated.theme == "light"
        # 新邮箱可登录，密码不变
        assert (await service.authenticate("david@example.com", "secret1")).id == user.id

    async def test_theme_kept_when_omitted(self, service):
        user = await service.signup("erin@example.com", "secret1", "Erin")
        await service.update_profile(user.id, "Erin", "erin@example.com", "light")
        updated = await service.update_profile(user.id, "Erin B", "erin@example.com")
        assert updated.theme == "light"

    async def test_same_email_allowed(self, service):
        user = await service.signup("faye@example.com", "secret1", "Faye")
        updated = await service.update_profile(user.id, "Faye", "faye@example.com")
        assert updated.id == user.id

    async def test_email_taken_by_other_user(self, service):
        await service.signup("gus@example.com", "secret1", "Gus")
        user = await service.signup("hal@example.com", "secret1", "Hal")
        with pytest.raises(ConflictError):
            await service.update_profile(user.id, "Hal", "gus@example.com")

    @pytest.mark.parametrize("name, email", [("", "x@example.com"), ("X", None), ("X", "bad-email")])
    async def test_invalid_profile(self, service, name, email):
        user = await service.signup("ivy@example.com", "secret1", "Ivy")
        with pytest.raises(InvalidRequestError):
            await service.update_profile(user.id, name, email)

    async def test_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            await service.update_profile("missing", "X", "x@example.com")
