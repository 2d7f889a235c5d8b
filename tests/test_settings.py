"""
Tests for startup configuration validation.
"""

import pytest

from config.settings import Settings
from connectors.errors import ConfigError


class TestValidateRequired:
    def test_complete_config_passes(self, settings):
        settings.validate_required()

    def test_missing_variables_are_named(self):
        bare = Settings(_env_file=None, client_id="cid", client_secret="", redirect_uri="", token_encryption_key="")
        with pytest.raises(ConfigError) as info:
            bare.validate_required()
        message = str(info.value)
        assert "CLIENT_SECRET" in message
        assert "REDIRECT_URI" in message
        assert "TOKEN_ENCRYPTION_KEY" in message
        assert "CLIENT_ID" not in message.replace("CLIENT_SECRET", "")

    @pytest.mark.parametrize("secret", ["", "change-me-auth-token-secret"])
    def test_placeholder_auth_secret_rejected(self, settings, secret):
        with pytest.raises(ConfigError) as info:
            settings.model_copy(update={"auth_token_secret": secret}).validate_required()
        assert "AUTH_TOKEN_SECRET" in str(info.value)
        assert "change-me" not in str(info.value)

    def test_negative_buffer_rejected(self, settings):
        with pytest.raises(ConfigError):
            settings.model_copy(update={"expiry_buffer_seconds": -5}).validate_required()

    def test_defaults(self):
        defaults = Settings(_env_file=None)
        assert defaults.provider_timeout_seconds == 10.0
        assert "manage_customers" in defaults.scopes

    def test_env_names(self, monkeypatch):
        monkeypatch.setenv("CLIENT_ID", "from-env")
        monkeypatch.setenv("EXPIRY_BUFFER_SECONDS", "120")
        loaded = Settings(_env_file=None)
        assert loaded.client_id == "from-env"
        assert loaded.expiry_buffer_seconds == 120
