import hashlib
import hmac
import math
import secrets

import bcrypt


PASSWORD_CHARS = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
SPECIAL_CHARS = "!@#$%^&*()"
EXTRA_SPECIAL_CHARS = "-_ []{}<>~`+=,.;:/?|"

NONCE_LIFE = 24 * 60 * 60


def generate_password(length: int = 12, special_chars: bool = True, extra_special_chars: bool = False) -> str:
    """
    Generate a cryptographically secure random password.

    Args:
        length: Number of characters to generate
        special_chars: Include the standard symbols ``!@#$%^&*()``
        extra_special_chars: Include punctuation such as ``|`` and ``/``

    Returns:
        The random string
    """
    chars = PASSWORD_CHARS
    if special_chars:
        chars += SPECIAL_CHARS
    if extra_special_chars:
        chars += EXTRA_SPECIAL_CHARS
    return "".join(secrets.choice(chars) for _ in range(length))


def _prepare_key_for_bcrypt(key: str) -> bytes:
    """
    Prepare a key for bcrypt hashing.
    Bcrypt has a 72 byte limit, so we hash longer keys with SHA256 first.
    """
    key_bytes = key.encode("utf-8")
    if len(key_bytes) > 72:
        return hashlib.sha256(key_bytes).hexdigest().encode("utf-8")
    return key_bytes


def hash_key(key: str, rounds: int = 12) -> str:
    """
    Hash a key using bcrypt.

    Args:
        key: The plain text key to hash
        rounds: bcrypt cost factor

    Returns:
        The bcrypt hash as a string
    """
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(_prepare_key_for_bcrypt(key), salt)
    return hashed.decode("utf-8")


def verify_key(plain_key: str, hashed_key: str) -> bool:
    """
    Verify a key against its bcrypt hash using constant-time comparison.

    Args:
        plain_key: The plain text key to verify
        hashed_key: The bcrypt hash to compare against

    Returns:
        True if the key matches, False otherwise
    """
    if not plain_key or not isinstance(hashed_key, str):
        return False
    try:
        return bcrypt.checkpw(_prepare_key_for_bcrypt(plain_key), hashed_key.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def constant_time_compare(a: str, b: str) -> bool:
    """
    Perform a constant-time string comparison to prevent timing attacks.

    Args:
        a: First string to compare
        b: Second string to compare

    Returns:
        True if strings are equal, False otherwise
    """
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def hmac_sha1(data: str, secret: str) -> str:
    """Hex HMAC-SHA1 of ``data`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).hexdigest()


def nonce_tick(now: int) -> int:
    # A nonce rolls over every half of its lifetime
    return math.ceil(now / (NONCE_LIFE / 2))


def create_nonce(action: str, sign, now: int) -> str:
    """
    Create a short-lived token tying a link to an action.

    Args:
        action: Name of the action the nonce protects
        sign: Callable returning a hex signature for a string
        now: Current unix timestamp
    """
    return sign(f"{nonce_tick(now)}|{action}")[-12:-2]


def verify_nonce(nonce: str | None, action: str, sign, now: int) -> bool:
    """Accept nonces created in the current or the previous tick."""
    if not nonce:
        return False
    tick = nonce_tick(now)
    for candidate_tick in (tick, tick - 1):
        expected = sign(f"{candidate_tick}|{action}")[-12:-2]
        if constant_time_compare(expected, nonce):
            return True
    return False
