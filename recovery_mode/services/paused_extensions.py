from typing import Any

from recovery_mode.core.db.options import MetaStore, OptionStore
from recovery_mode.core.logger import get_logger

logger = get_logger(__name__)


class PausedExtensionsStorage:
    """
    Errors of paused plugins and themes, scoped to one recovery mode session.

    Only one error is kept per extension; a later error for the same
    extension replaces the earlier one. On multi-site installs each error is
    its own metadata row of the current blog, otherwise all errors share one
    option.

    Every method degrades to a failed or empty result when no storage is
    available, since it can be reached from a crashing request.
    """

    def __init__(self, store: OptionStore | None, session_id: str | None, meta: MetaStore | None = None):
        self.store = store
        self.meta = meta
        self.option_name = f"{session_id or ''}_paused_extensions"

    def record(self, type: str, extension: str, error: dict[str, Any]) -> bool:
        """
        Record an extension error.

        Args:
            type: Extension type, either "plugin" or "theme"
            extension: Plugin or theme directory name
            error: Error details with kind, file, line and message

        Returns:
            True on success, False on failure
        """
        if not self._is_api_loaded():
            return False

        if self.meta is not None:
            meta_key = self.meta_key(type, extension)

            # Do not update if the error is already stored.
            if self.meta.get(meta_key) == error:
                return True

            return self.meta.update(meta_key, error)

        paused_extensions = self.get_all()

        # Do not update if the error is already stored.
        if paused_extensions.get(type, {}).get(extension) == error:
            return True

        paused_extensions.setdefault(type, {})[extension] = error

        return self.store.update(self.option_name, paused_extensions)

    def forget(self, type: str, extension: str) -> bool:
        """Forget a previously recorded extension error."""
        if not self._is_api_loaded():
            return False

        if self.meta is not None:
            meta_key = self.meta_key(type, extension)

            # Do not delete if no error is stored.
            if self.meta.get(meta_key) is None:
                return True

            return self.meta.delete(meta_key)

        paused_extensions = self.get_all()

        # Do not delete if no error is stored.
        if extension not in paused_extensions.get(type, {}):
            return True

        del paused_extensions[type][extension]

        if not paused_extensions[type]:
            del paused_extensions[type]

        # Clean up the entire option if we're removing the only error.
        if not paused_extensions:
            return self.store.delete(self.option_name)

        return self.store.update(self.option_name, paused_extensions)

    def get(self, type: str, extension: str) -> dict[str, Any] | None:
        if not self._is_api_loaded():
            return None

        if self.meta is not None:
            return self.meta.get(self.meta_key(type, extension)) or None

        return self.get_all(type).get(extension)

    def get_all(self, type: str | None = None) -> dict[str, Any]:
        """
        Get the paused extensions with their errors.

        Args:
            type: Optionally, limit to extensions of the given type

        Returns:
            Mapping of type to mapping of extension to error. When ``type`` is
            given, just the extension to error mapping of that type.
        """
        if not self._is_api_loaded():
            return {}

        if self.meta is not None:
            prefix = f"{self.option_name}_"
            paused_extensions: dict[str, Any] = {}
            for meta_key, error in self.meta.items(prefix).items():
                parts = meta_key[len(prefix):].split("_", 1)
                if len(parts) != 2:
                    continue
                paused_extensions.setdefault(parts[0], {})[parts[1]] = error
        else:
            paused_extensions = self.store.get(self.option_name) or {}
            if not isinstance(paused_extensions, dict):
                logger.warning(f"Discarding malformed paused extensions option {self.option_name}")
                paused_extensions = {}

        if type:
            return paused_extensions.get(type, {})

        return paused_extensions

    def delete_all(self) -> bool:
        """Remove every paused extension of this session."""
        if not self._is_api_loaded():
            return False

        if self.meta is not None:
            return self.meta.delete_prefix(f"{self.option_name}_")

        if self.store.get(self.option_name) is None:
            return True

        return self.store.delete(self.option_name)

    def meta_key(self, type: str, extension: str) -> str:
        return f"{self.option_name}_{type}_{extension}"

    def _is_api_loaded(self) -> bool:
        return self.store is not None or self.meta is not None


def record_extension_error(storage: PausedExtensionsStorage, extension, error) -> bool:
    """Record ``error`` against the plugin or theme it came from."""
    if extension is None:
        return False
    return storage.record(extension.type, extension.slug, error.model_dump())


def forget_extension_error(storage: PausedExtensionsStorage, type: str, extension: str, network_wide: bool = False) -> bool:
    """
    Forget a recorded extension error again.

    Args:
        storage: The session's paused extensions
        type: Type of the extension
        extension: Relative path of the extension; only the directory counts
        network_wide: Resume the extension on every blog of a multi-site install
    """
    extension = extension.split("/")[0]

    if not extension:
        return False

    if network_wide and storage.meta is not None:
        return storage.meta.delete_for_all_blogs(storage.meta_key(type, extension))

    return storage.forget(type, extension)
