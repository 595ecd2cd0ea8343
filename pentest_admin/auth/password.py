"""
密码哈希与临时密码生成

- bcrypt 哈希，cost 因子取自 PASSWORD_HASH_ROUNDS（默认 12）
- bcrypt 是 CPU 密集操作，放到线程池执行，不阻塞事件循环
- 临时密码使用 secrets 生成，保证包含小写、大写、数字、符号各至少一个
"""

import asyncio
import secrets
import string
from functools import lru_cache

import bcrypt

from pentest_admin.config import get_settings

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

_COMPLEXITY_MESSAGES = {
    "too_short": f"Password must be at least {PASSWORD_MIN_LENGTH} characters long",
    "too_long": f"Password must be at most {PASSWORD_MAX_LENGTH} characters long",
    "missing_lowercase": "Password must contain at least one lowercase letter",
    "missing_uppercase": "Password must contain at least one uppercase letter",
    "missing_number": "Password must contain at least one number",
    "missing_symbol": "Password must contain at least one special character",
}


def _hash_sync(password: str, rounds: int) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def _verify_sync(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # 哈希格式非法（如历史脏数据），视为不匹配
        return False


async def hash_password(password: str) -> str:
    """生成 bcrypt 哈希"""
    rounds = get_settings().password_hash_rounds
    return await asyncio.to_thread(_hash_sync, password, rounds)


async def verify_password(password: str, hashed: str) -> bool:
    """校验明文密码与哈希是否匹配"""
    return await asyncio.to_thread(_verify_sync, password, hashed)


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return _hash_sync(secrets.token_urlsafe(16), get_settings().password_hash_rounds)


async def verify_dummy_password(password: str) -> None:
    """
    对一个随机哈希做一次同样成本的校验，结果丢弃

    账号不存在或已停用时调用，使登录耗时与密码错误时一致。
    """
    hashed = await asyncio.to_thread(_dummy_hash)
    await verify_password(password, hashed)


def generate_secure_password(length: int = 12) -> str:
    """
    生成随机临时密码

    先从四类字符中各取一个，剩余位从全字符集中随机抽取，最后打乱顺序。
    """
    if length < 4:
        raise ValueError("Password length must be at least 4")

    alphabet = LOWERCASE + UPPERCASE + DIGITS + SYMBOLS
    chars = [
        secrets.choice(LOWERCASE),
        secrets.choice(UPPERCASE),
        secrets.choice(DIGITS),
        secrets.choice(SYMBOLS),
    ]
    chars.extend(secrets.choice(alphabet) for _ in range(length - 4))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def validate_password_complexity(password: str) -> list[str]:
    """
    检查密码复杂度

    Returns:
        错误码列表，空列表表示通过
    """
    errors = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append("too_short")
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append("too_long")
    if not any(c in LOWERCASE for c in password):
        errors.append("missing_lowercase")
    if not any(c in UPPERCASE for c in password):
        errors.append("missing_uppercase")
    if not any(c in DIGITS for c in password):
        errors.append("missing_number")
    if not any(c in SYMBOLS for c in password):
        errors.append("missing_symbol")
    return errors


def validate_password(password: str) -> tuple[bool, list[str]]:
    """返回 (是否通过, 面向用户的错误信息列表)"""
    codes = validate_password_complexity(password)
    return not codes, [_COMPLEXITY_MESSAGES[code] for code in codes]
