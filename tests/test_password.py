"""
密码工具单元测试

测试 pentest_admin/auth/password.py 的功能：
- bcrypt 哈希与校验
- 临时密码生成
- 密码复杂度校验
"""

from unittest.mock import patch

import bcrypt
import pytest

from pentest_admin.auth.password import (
    DIGITS,
    LOWERCASE,
    SYMBOLS,
    UPPERCASE,
    _dummy_hash,
    generate_secure_password,
    hash_password,
    validate_password,
    validate_password_complexity,
    verify_dummy_password,
    verify_password,
)


class TestHashPassword:
    """测试哈希与校验"""

    @pytest.mark.asyncio
    async def test_hash_and_verify(self):
        """正确密码通过校验"""
        hashed = await hash_password("Str0ng!Pass")
        assert hashed != "Str0ng!Pass"
        assert hashed.startswith("$2")
        assert await verify_password("Str0ng!Pass", hashed)

    @pytest.mark.asyncio
    async def test_wrong_password(self):
        """错误密码校验失败"""
        hashed = await hash_password("Str0ng!Pass")
        assert await verify_password("wrong", hashed) is False

    @pytest.mark.asyncio
    async def test_salted(self):
        """同一密码两次哈希结果不同"""
        assert await hash_password("Str0ng!Pass") != await hash_password("Str0ng!Pass")

    @pytest.mark.asyncio
    async def test_malformed_hash_returns_false(self):
        """非法哈希视为不匹配，不抛异常"""
        assert await verify_password("anything", "not-a-bcrypt-hash") is False


class TestDummyPassword:
    """账号不存在时的等价校验"""

    @pytest.mark.asyncio
    async def test_runs_bcrypt_check(self):
        with patch("pentest_admin.auth.password.bcrypt.checkpw", wraps=bcrypt.checkpw) as checkpw:
            assert await verify_dummy_password("Whatever@123") is None
        checkpw.assert_called_once()

    def test_hash_is_reused(self):
        assert _dummy_hash() == _dummy_hash()
        assert _dummy_hash().startswith("$2")


class TestGenerateSecurePassword:
    """测试临时密码生成"""

    def test_default_length(self):
        assert len(generate_secure_password()) == 12

    def test_custom_length(self):
        assert len(generate_secure_password(20)) == 20

    @pytest.mark.parametrize("length", [4, 5, 12, 32])
    def test_contains_every_class(self, length):
        """每类字符至少一个"""
        for _ in range(20):
            password = generate_secure_password(length)
            assert any(c in LOWERCASE for c in password)
            assert any(c in UPPERCASE for c in password)
            assert any(c in DIGITS for c in password)
            assert any(c in SYMBOLS for c in password)

    def test_generated_password_passes_validation(self):
        """12 位临时密码满足复杂度要求"""
        is_valid, messages = validate_password(generate_secure_password())
        assert is_valid
        assert messages == []

    def test_randomness(self):
        passwords = {generate_secure_password() for _ in range(50)}
        assert len(passwords) == 50

    def test_too_short_raises(self):
        with pytest.raises(ValueError):
            generate_secure_password(3)


class TestValidatePassword:
    """测试密码复杂度"""

    def test_valid(self):
        assert validate_password_complexity("Abcdef1!") == []

    def test_too_short(self):
        assert "too_short" in validate_password_complexity("Ab1!")

    def test_too_long(self):
        assert "too_long" in validate_password_complexity("Aa1!" * 40)

    def test_missing_classes(self):
        codes = validate_password_complexity("abcdefgh")
        assert codes == ["missing_uppercase", "missing_number", "missing_symbol"]

    def test_messages(self):
        is_valid, messages = validate_password("password")
        assert is_valid is False
        assert any("uppercase" in m for m in messages)
        assert any("special character" in m for m in messages)
