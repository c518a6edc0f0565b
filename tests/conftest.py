"""
Test configuration and fixtures for recovery mode tests.
"""
import importlib.util
from types import SimpleNamespace

import pytest
from fastapi import Request as FastAPIRequest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.requests import Request

from recovery_mode.bootstrap import build_recovery_mode, build_registry
from recovery_mode.core.config import RecoveryModeConfig
from recovery_mode.core.db.tables.base import Base
from recovery_mode.core.rate_limit import limiter

START_TIME = 1_700_000_000

BROKEN_PLUGIN = '''
def render():
    raise RuntimeError("Call to undefined function broken_plugin_render()")
'''

BROKEN_THEME = '''
def render():
    return {}["header"]
'''


class FakeClock:
    """Settable stand-in for the current unix time."""

    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class FakeMailer:
    """Records mail instead of sending it."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent = []

    def send(self, to, subject, body, headers=None):
        self.sent.append(SimpleNamespace(to=to, subject=subject, body=body, headers=headers))
        return self.succeed


def load_extension(path):
    """Import an extension file the way a host would, and run it."""
    spec = importlib.util.spec_from_file_location(f"extension_{path.parent.name}", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module.render()


def build_request(path="/", query_string="", cookies=None, scheme="http", headers=None):
    """Build a bare request without going through an application."""
    raw_headers = [(b"host", b"testserver")]
    if cookies:
        cookie_header = "; ".join(f"{name}={value}" for name, value in cookies.items())
        raw_headers.append((b"cookie", cookie_header.encode("latin-1")))
    for name, value in (headers or {}).items():
        raw_headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))

    scope = {
        "type": "http",
        "method": "GET",
        "scheme": scheme,
        "server": ("testserver", 443 if scheme == "https" else 80),
        "client": ("127.0.0.1", 12345),
        "path": path,
        "root_path": "",
        "query_string": query_string.encode("latin-1"),
        "headers": raw_headers,
    }
    return Request(scope)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate limit counters are process wide; start every test from zero."""
    limiter.reset()
    yield


@pytest.fixture(scope="function")
def db_session():
    """Create an isolated test database session for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    session.close()
    Base.metadata.drop_all(engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def extension_dirs(tmp_path):
    """A plugin directory and a theme directory, each holding one broken extension."""
    plugin_dir = tmp_path / "plugins"
    theme_dir = tmp_path / "themes"

    plugin_file = plugin_dir / "broken-plugin" / "broken-plugin.py"
    plugin_file.parent.mkdir(parents=True)
    plugin_file.write_text(BROKEN_PLUGIN)

    theme_file = theme_dir / "broken-theme" / "functions.py"
    theme_file.parent.mkdir(parents=True)
    theme_file.write_text(BROKEN_THEME)

    return SimpleNamespace(
        plugin_dir=plugin_dir,
        theme_dir=theme_dir,
        plugin_file=plugin_file,
        theme_file=theme_file,
    )


@pytest.fixture
def config(extension_dirs):
    return RecoveryModeConfig(
        site_name="Test Site",
        admin_email="admin@example.com",
        auth_key="test-auth-key",
        auth_salt="test-auth-salt",
        plugin_dir=str(extension_dirs.plugin_dir),
        theme_dirs=[str(extension_dirs.theme_dir)],
    )


@pytest.fixture
def recovery_factory(db_session, mailer, clock):
    """Build recovery mode containers over the test database."""

    def create(config, **kwargs):
        kwargs.setdefault("mailer", mailer)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("hash_rounds", 4)
        return build_recovery_mode(db_session, config, **kwargs)

    return create


@pytest.fixture
def recovery(recovery_factory, config):
    return recovery_factory(config, site_url="http://testserver")


@pytest.fixture
def client_factory(mailer, clock, extension_dirs):
    """Factory to create test clients with a specific db session and configuration."""

    def create_client(session, config, **kwargs):
        from recovery_mode.app import create_app

        app = create_app(
            session_factory=lambda: session,
            config=config,
            mailer=kwargs.get("mailer", mailer),
            registry=build_registry(config),
            clock=kwargs.get("clock", clock),
            hash_rounds=4,
        )

        @app.get("/admin/plugin-page")
        def plugin_page(request: FastAPIRequest):
            recovery = request.state.recovery_mode
            if recovery.paused_extensions().get("plugin", "broken-plugin") is None:
                load_extension(extension_dirs.plugin_file)
            return {"rendered": True}

        @app.get("/admin/theme-page")
        def theme_page(request: FastAPIRequest):
            recovery = request.state.recovery_mode
            if recovery.paused_extensions().get("theme", "broken-theme") is None:
                load_extension(extension_dirs.theme_file)
            return {"rendered": True}

        @app.get("/admin/core-page")
        def core_page():
            raise ValueError("Core failure")

        @app.get("/front-page")
        def front_page(request: FastAPIRequest):
            recovery = request.state.recovery_mode
            if recovery.paused_extensions().get("plugin", "broken-plugin") is None:
                load_extension(extension_dirs.plugin_file)
            return {"rendered": True}

        return TestClient(app, raise_server_exceptions=kwargs.get("raise_server_exceptions", True))

    return create_client


@pytest.fixture
def make_request():
    return build_request


@pytest.fixture
def run_extension():
    return load_extension
