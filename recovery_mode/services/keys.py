from typing import Callable

from recovery_mode.core.db.options import OptionStore
from recovery_mode.core.errors import HashMismatch, InvalidKeyFormat, KeyExpired, NoKeySet, StorageError
from recovery_mode.core.logger import get_logger
from recovery_mode.core.security import generate_password, hash_key, verify_key
from recovery_mode.core.timeutil import current_time

logger = get_logger(__name__)

RECOVERY_KEY_OPTION = "recovery_key"
RECOVERY_KEY_LENGTH = 20


class RecoveryModeKeyService:
    """
    Generates and validates the one-time keys sent in recovery mode emails.

    Only one key exists at a time: generating a new key overwrites the stored
    record, so every previously issued key stops validating.
    """

    def __init__(self, options: OptionStore, clock: Callable[[], int] = current_time, hash_rounds: int = 12):
        self.options = options
        self.clock = clock
        self.hash_rounds = hash_rounds

    def generate_and_store_recovery_mode_key(self) -> str:
        """
        Create a recovery mode key and store its hash.

        Returns:
            The plain text key. It is not recoverable afterwards.

        Raises:
            StorageError: The key record could not be saved
        """
        key = generate_password(RECOVERY_KEY_LENGTH)
        record = {
            "hashed_key": hash_key(key, rounds=self.hash_rounds),
            "created_at": self.clock(),
        }
        if not self.options.update(RECOVERY_KEY_OPTION, record):
            raise StorageError("Could not store the recovery mode key.")
        logger.info("Generated a new recovery mode key")
        return key

    def validate_recovery_mode_key(self, key: str, ttl: int) -> None:
        """
        Verify a recovery mode key against the stored record.

        Args:
            key: The plain text key
            ttl: Number of seconds the key stays valid after creation

        Raises:
            NoKeySet: No key has been generated
            InvalidKeyFormat: The stored record is corrupt
            HashMismatch: The key does not match
            KeyExpired: The key is older than ``ttl``
        """
        record = self.options.get(RECOVERY_KEY_OPTION)

        if not record:
            raise NoKeySet()

        if (
            not isinstance(record, dict)
            or not isinstance(record.get("hashed_key"), str)
            or not isinstance(record.get("created_at"), int)
        ):
            raise InvalidKeyFormat()

        if not verify_key(key, record["hashed_key"]):
            logger.warning("Recovery mode key did not match the stored hash")
            raise HashMismatch()

        if self.clock() > record["created_at"] + ttl:
            raise KeyExpired()
