"""
Composition root: builds the recovery mode services for one request.
"""
import importlib
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from recovery_mode.controller import EmailRecoveryModeController, RecoveryModeController, resolve_controller
from recovery_mode.core.config import RecoveryModeConfig
from recovery_mode.core.db.options import MetaStore, OptionStore
from recovery_mode.core.logger import get_logger
from recovery_mode.core.timeutil import current_time
from recovery_mode.services.cookies import RecoveryModeCookieService
from recovery_mode.services.email import RecoveryModeEmailService
from recovery_mode.services.extensions import ExtensionRegistry
from recovery_mode.services.keys import RecoveryModeKeyService
from recovery_mode.services.links import RecoveryModeLinkService
from recovery_mode.services.mailer import Mailer, SmtpMailer
from recovery_mode.services.paused_extensions import PausedExtensionsStorage

logger = get_logger(__name__)


@dataclass
class RecoveryMode:
    config: RecoveryModeConfig
    network_options: OptionStore
    blog_options: OptionStore
    meta: MetaStore | None
    registry: ExtensionRegistry
    keys: RecoveryModeKeyService
    cookies: RecoveryModeCookieService
    links: RecoveryModeLinkService
    email: RecoveryModeEmailService
    controller: RecoveryModeController
    clock: Callable[[], int]

    def paused_extensions(self, session_id: str | None = None) -> PausedExtensionsStorage:
        """Paused extensions of ``session_id``, by default the active session."""
        if session_id is None:
            session_id = self.controller.session_id
        return PausedExtensionsStorage(self.blog_options, session_id, meta=self.meta)


def build_registry(config: RecoveryModeConfig) -> ExtensionRegistry:
    return ExtensionRegistry(
        plugin_dir=config.plugin_dir,
        theme_dirs=config.theme_dirs,
        network_plugins=config.network_plugins,
        multisite=config.multisite,
    )


def build_recovery_mode(
    session: Session,
    config: RecoveryModeConfig,
    mailer: Mailer | None = None,
    registry: ExtensionRegistry | None = None,
    clock: Callable[[], int] = current_time,
    site_url: str | None = None,
    hash_rounds: int = 12,
) -> RecoveryMode:
    """
    Wire up one instance of each recovery mode service.

    Args:
        session: Database session of the current request
        config: Recovery mode configuration
        mailer: Mail transport, SMTP from the configuration by default
        registry: Known plugins and themes, built from the configuration by default
        clock: Source of the current unix time
        site_url: Base URL for emailed links, ``config.site_url`` by default
        hash_rounds: bcrypt cost for recovery keys
    """
    network_options = OptionStore.network(session, config.network_id)
    blog_options = OptionStore(session, scope_id=config.blog_id)
    meta = MetaStore(session, config.blog_id) if config.multisite and config.site_meta_supported else None
    registry = registry or build_registry(config)
    mailer = mailer or SmtpMailer(config.smtp_host, config.smtp_port, config.smtp_sender)

    keys = RecoveryModeKeyService(network_options, clock=clock, hash_rounds=hash_rounds)
    cookies = RecoveryModeCookieService(
        network_options,
        name=config.cookie_name,
        domain=config.cookie_domain,
        path=config.cookie_path,
        site_path=config.site_cookie_path,
        auth_key=config.auth_key,
        auth_salt=config.auth_salt,
        length=config.cookie_length,
        clock=clock,
    )
    links = RecoveryModeLinkService(keys, login_path=config.login_path, site_url=site_url or config.site_url)
    email = RecoveryModeEmailService(
        network_options,
        links,
        mailer,
        registry,
        site_name=config.site_name,
        admin_email=config.admin_email,
        recovery_mode_email=config.recovery_mode_email,
        clock=clock,
    )

    recovery = RecoveryMode(
        config=config,
        network_options=network_options,
        blog_options=blog_options,
        meta=meta,
        registry=registry,
        keys=keys,
        cookies=cookies,
        links=links,
        email=email,
        controller=None,
        clock=clock,
    )

    default = EmailRecoveryModeController(
        cookies,
        keys,
        links,
        email,
        registry,
        paused_extensions=lambda session_id: PausedExtensionsStorage(blog_options, session_id, meta=meta),
        config=config,
    )
    recovery.controller = resolve_controller(load_controller(config.controller, recovery), default)
    return recovery


def load_controller(path: str | None, recovery: RecoveryMode) -> object | None:
    """
    Build a substitute controller from a ``"package.module:factory"`` path.

    The factory is called with the ``RecoveryMode`` container. Import or
    factory failures fall back to the default controller.
    """
    if not path:
        return None

    module_name, _, attribute = path.partition(":")
    try:
        factory = getattr(importlib.import_module(module_name), attribute or "controller")
        return factory(recovery)
    except Exception:
        logger.exception(f"Could not load recovery mode controller {path}")
        return None
