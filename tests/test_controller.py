"""
Tests for the recovery mode controller.
"""
import base64
import hashlib
from urllib.parse import urlencode

import pytest
from fastapi import Response

from recovery_mode.bootstrap import load_controller
from recovery_mode.controller import EmailRecoveryModeController, resolve_controller
from recovery_mode.core.config import HOUR_IN_SECONDS
from recovery_mode.core.errors import EmailSentAlready, InvalidSource
from recovery_mode.core.models import ErrorInfo
from recovery_mode.services.email import RATE_LIMIT_OPTION
from recovery_mode.services.links import LOGIN_ACTION_ENTER


@pytest.fixture
def plugin_error(extension_dirs):
    return ErrorInfo(kind="RuntimeError", file=str(extension_dirs.plugin_file), line=3, message="boom")


def begin_link_query(key):
    return urlencode({"action": LOGIN_ACTION_ENTER, "rm_key": key})


def start_session(recovery, make_request):
    """Run the controller for a request carrying a fresh session cookie."""
    cookie = recovery.cookies.generate_cookie()
    assert recovery.controller.run(make_request("/admin", cookies={"recovery_mode": cookie})) is None
    return cookie


class TestRun:
    """Tests for detecting recovery mode sessions."""

    def test_plain_request_is_inactive(self, recovery, make_request):
        assert recovery.controller.run(make_request("/admin")) is None
        assert not recovery.controller.is_active
        assert recovery.controller.session_id is None

    def test_valid_cookie_activates(self, recovery, make_request):
        cookie = start_session(recovery, make_request)
        random = base64.b64decode(cookie).decode().split("|")[2]

        assert recovery.controller.is_active
        assert recovery.controller.session_id == hashlib.sha1(random.encode()).hexdigest()

    def test_invalid_cookie_ends_request(self, recovery, make_request):
        response = recovery.controller.run(make_request("/admin", cookies={"recovery_mode": "garbage"}))

        assert response.status_code == 403
        assert b"Invalid cookie format." in response.body
        assert 'recovery_mode="";' in response.headers["set-cookie"]
        assert not recovery.controller.is_active

    def test_expired_cookie_ends_request(self, recovery, make_request, clock):
        cookie = recovery.cookies.generate_cookie()
        clock.advance(recovery.config.cookie_length + 1)

        response = recovery.controller.run(make_request("/admin", cookies={"recovery_mode": cookie}))
        assert response.status_code == 403
        assert b"Cookie expired." in response.body

    def test_session_id_override(self, recovery_factory, config, make_request):
        recovery = recovery_factory(config.model_copy(update={"session_id": "forced"}))

        assert recovery.controller.run(make_request("/admin", cookies={"recovery_mode": "garbage"})) is None
        assert recovery.controller.is_active
        assert recovery.controller.session_id == "forced"

    def test_begin_link_sets_cookie(self, recovery, make_request):
        key = recovery.keys.generate_and_store_recovery_mode_key()

        response = recovery.controller.run(make_request("/login", query_string=begin_link_query(key)))

        assert response.status_code == 302
        assert response.headers["location"] == "http://testserver/login?action=entered_recovery_mode"
        cookie_header = response.headers["set-cookie"]
        assert cookie_header.startswith("recovery_mode=")
        assert "HttpOnly" in cookie_header
        assert "Secure" not in cookie_header

    def test_begin_link_over_https_sets_secure_cookie(self, recovery, make_request):
        key = recovery.keys.generate_and_store_recovery_mode_key()

        response = recovery.controller.run(make_request("/login", query_string=begin_link_query(key), scheme="https"))
        assert "Secure" in response.headers["set-cookie"]

    def test_begin_link_with_wrong_key(self, recovery, make_request):
        recovery.keys.generate_and_store_recovery_mode_key()

        response = recovery.controller.run(make_request("/login", query_string=begin_link_query("wrong")))

        assert response.status_code == 403
        assert b"Invalid recovery key." in response.body
        assert "set-cookie" not in response.headers

    def test_begin_link_without_key(self, recovery, make_request):
        response = recovery.controller.run(make_request("/login", query_string=begin_link_query("x")))
        assert response.status_code == 403
        assert b"Recovery Mode not initialized." in response.body

    def test_begin_link_only_on_login_path(self, recovery, make_request):
        key = recovery.keys.generate_and_store_recovery_mode_key()
        assert recovery.controller.run(make_request("/admin", query_string=begin_link_query(key))) is None

    def test_expired_link(self, recovery, make_request, clock):
        key = recovery.keys.generate_and_store_recovery_mode_key()
        clock.advance(recovery.controller.get_link_ttl() + 1)

        response = recovery.controller.run(make_request("/login", query_string=begin_link_query(key)))
        assert response.status_code == 403
        assert b"Recovery key expired." in response.body


class TestHandleError:
    """Tests for reacting to fatal errors."""

    def test_inactive_sends_email(self, recovery, make_request, mailer, plugin_error):
        recovery.controller.run(make_request("/admin"))

        assert recovery.controller.handle_error(plugin_error, make_request("/admin")) is None
        assert len(mailer.sent) == 1

    def test_inactive_rate_limited(self, recovery, make_request, plugin_error):
        recovery.controller.run(make_request("/admin"))
        recovery.controller.handle_error(plugin_error, make_request("/admin"))

        with pytest.raises(EmailSentAlready):
            recovery.controller.handle_error(plugin_error, make_request("/admin"))

    def test_active_pauses_extension_and_reloads(self, recovery, make_request, mailer, plugin_error):
        start_session(recovery, make_request)

        response = recovery.controller.handle_error(plugin_error, make_request("/admin/page", query_string="tab=1"))

        assert response.status_code == 302
        assert response.headers["location"] == "http://testserver/admin/page?tab=1"
        assert recovery.paused_extensions().get("plugin", "broken-plugin") == plugin_error.model_dump()
        assert mailer.sent == []

    def test_active_after_headers_sent(self, recovery, make_request, plugin_error):
        start_session(recovery, make_request)

        assert recovery.controller.handle_error(plugin_error, make_request("/admin"), headers_sent=True) is None
        assert recovery.paused_extensions().get("plugin", "broken-plugin") is not None

    def test_theme_error(self, recovery, make_request, extension_dirs):
        start_session(recovery, make_request)
        error = ErrorInfo(kind="KeyError", file=str(extension_dirs.theme_file), line=3, message="'header'")

        recovery.controller.handle_error(error, make_request("/admin"))
        assert recovery.paused_extensions().get_all() == {"theme": {"broken-theme": error.model_dump()}}

    def test_error_outside_extensions(self, recovery, make_request, tmp_path):
        error = ErrorInfo(kind="ValueError", file=str(tmp_path / "core.py"), line=1, message="core")
        with pytest.raises(InvalidSource):
            recovery.controller.handle_error(error, make_request("/admin"))

    def test_network_plugin_is_not_paused(self, recovery_factory, config, make_request, mailer, plugin_error):
        config = config.model_copy(update={"multisite": True, "network_plugins": ["broken-plugin/broken-plugin.py"]})
        recovery = recovery_factory(config)

        with pytest.raises(InvalidSource):
            recovery.controller.handle_error(plugin_error, make_request("/admin"))
        assert mailer.sent == []

    def test_multisite_records_in_blog_meta(self, recovery_factory, config, make_request, plugin_error):
        recovery = recovery_factory(config.model_copy(update={"multisite": True}))
        start_session(recovery, make_request)

        recovery.controller.handle_error(plugin_error, make_request("/admin"))

        assert recovery.meta is not None
        assert recovery.meta.items(f"{recovery.controller.session_id}_paused_extensions_")


class TestExitSession:
    """Tests for ending recovery mode sessions."""

    def test_inactive(self, recovery, make_request, clock):
        recovery.network_options.update(RATE_LIMIT_OPTION, clock.now)
        recovery.controller.run(make_request("/admin"))

        response = Response()
        assert not recovery.controller.exit_session(response)

        assert recovery.network_options.get(RATE_LIMIT_OPTION) == clock.now
        assert "set-cookie" not in response.headers

    def test_exit_clears_session_state(self, recovery, make_request, plugin_error):
        recovery.email.maybe_send_recovery_mode_email(HOUR_IN_SECONDS, plugin_error, None)
        start_session(recovery, make_request)
        recovery.controller.handle_error(plugin_error, make_request("/admin"))

        response = Response()
        assert recovery.controller.exit_session(response)

        assert recovery.paused_extensions().get_all() == {}
        assert recovery.network_options.get(RATE_LIMIT_OPTION) is None
        assert 'recovery_mode="";' in response.headers["set-cookie"]


class TestLinkTtl:
    """Tests for how long emailed links stay valid."""

    def test_defaults_to_rate_limit(self, recovery):
        assert recovery.controller.get_link_ttl() == recovery.config.email_rate_limit

    def test_never_shorter_than_rate_limit(self, recovery_factory, config):
        recovery = recovery_factory(config.model_copy(update={"email_link_ttl": 60}))
        assert recovery.controller.get_link_ttl() == config.email_rate_limit

    def test_longer_ttl(self, recovery_factory, config):
        recovery = recovery_factory(config.model_copy(update={"email_link_ttl": config.email_rate_limit * 2}))
        assert recovery.controller.get_link_ttl() == config.email_rate_limit * 2


class CustomController:
    """Minimal controller keeping every request out of recovery mode."""

    is_active = False
    session_id = None

    def run(self, request):
        return None

    def handle_error(self, error, request, headers_sent=False):
        return None

    def exit_session(self, response):
        return False


class TestControllerSubstitution:
    """Tests for replacing the default controller."""

    def test_valid_controller_is_used(self, recovery):
        custom = CustomController()
        assert resolve_controller(custom, recovery.controller) is custom

    def test_invalid_controller_falls_back(self, recovery):
        assert resolve_controller(object(), recovery.controller) is recovery.controller

    def test_no_controller(self, recovery):
        assert resolve_controller(None, recovery.controller) is recovery.controller

    def test_load_controller_from_config(self, recovery_factory, config, tmp_path, monkeypatch):
        module = tmp_path / "custom_recovery_controller.py"
        module.write_text(
            "class Controller:\n"
            "    is_active = False\n"
            "    session_id = None\n"
            "    def run(self, request):\n"
            "        return None\n"
            "    def handle_error(self, error, request, headers_sent=False):\n"
            "        return None\n"
            "    def exit_session(self, response):\n"
            "        return False\n"
            "\n"
            "def build(recovery):\n"
            "    return Controller()\n"
        )
        monkeypatch.syspath_prepend(str(tmp_path))

        recovery = recovery_factory(config.model_copy(update={"controller": "custom_recovery_controller:build"}))
        assert type(recovery.controller).__name__ == "Controller"

    def test_broken_controller_path_falls_back(self, recovery_factory, config):
        recovery = recovery_factory(config.model_copy(update={"controller": "no_such_module:build"}))
        assert isinstance(recovery.controller, EmailRecoveryModeController)

    def test_load_controller_without_path(self, recovery):
        assert load_controller(None, recovery) is None
