import os
from pathlib import PurePath
from typing import Iterable, Mapping

from recovery_mode.core.models import ErrorInfo, Extension


def _normalize_path(path: str) -> PurePath:
    return PurePath(os.path.normpath(path.replace("\\", "/")))


class ExtensionRegistry:
    """
    Where plugins and themes live, and what they are called.

    Args:
        plugin_dir: Directory holding one sub-directory per plugin
        theme_dirs: Directories holding one sub-directory per theme
        network_plugins: Network activated plugin files, e.g. "akismet/akismet.py"
        multisite: Whether the installation runs several blogs
        display_names: Human readable names keyed by (type, slug)
    """

    def __init__(
        self,
        plugin_dir: str | None = None,
        theme_dirs: Iterable[str] = (),
        network_plugins: Iterable[str] = (),
        multisite: bool = False,
        display_names: Mapping[tuple[str, str], str] | None = None,
    ):
        self.plugin_dir = plugin_dir
        self.theme_dirs = list(theme_dirs)
        self.network_plugins = list(network_plugins)
        self.multisite = multisite
        self.display_names = dict(display_names or {})

    def roots(self) -> list[str]:
        roots = [self.plugin_dir] if self.plugin_dir else []
        return roots + self.theme_dirs

    def get_extension_for_error(self, error: ErrorInfo) -> Extension | None:
        """
        Get the extension that the error occurred in.

        The slug is the directory directly below the plugin or theme root
        that contains the failing file.
        """
        if not error.file or not self.plugin_dir:
            return None

        error_file = _normalize_path(error.file)

        slug = self._slug_below(error_file, self.plugin_dir)
        if slug:
            return Extension(type="plugin", slug=slug)

        for theme_dir in self.theme_dirs:
            slug = self._slug_below(error_file, theme_dir)
            if slug:
                return Extension(type="theme", slug=slug)

        return None

    def is_network_plugin(self, extension: Extension) -> bool:
        """Network activated plugins are never paused from a single blog."""
        if extension.type != "plugin" or not self.multisite:
            return False

        return any(plugin.startswith(f"{extension.slug}/") for plugin in self.network_plugins)

    def plugin_names(self, slug: str) -> list[str]:
        name = self.display_names.get(("plugin", slug))
        return [name] if name else [slug]

    def theme_name(self, slug: str) -> str:
        return self.display_names.get(("theme", slug), slug)

    @staticmethod
    def _slug_below(error_file: PurePath, root: str) -> str | None:
        try:
            relative = error_file.relative_to(_normalize_path(root))
        except ValueError:
            return None
        return relative.parts[0] if relative.parts else None
