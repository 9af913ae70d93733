"""
Unit tests for KeyringService.

Tests credential storage using mocked keyring backend.
"""

import os
from unittest.mock import MagicMock, patch
import pytest


class TestKeyringService:
    """Tests for KeyringService class."""

    @pytest.fixture
    def mock_keyring(self):
        """Mock keyring module."""
        with patch("core.infrastructure.keyring_service.KeyringService._get_keyring") as mock:
            keyring_mock = MagicMock()
            mock.return_value = keyring_mock
            # Storage for mocked credentials
            keyring_mock._storage = {}

            def get_password(service, name):
                return keyring_mock._storage.get((service, name))

            def set_password(service, name, value):
                keyring_mock._storage[(service, name)] = value

            def delete_password(service, name):
                if (service, name) in keyring_mock._storage:
                    del keyring_mock._storage[(service, name)]
                else:
                    raise Exception("Password not found")

            keyring_mock.get_password = get_password
            keyring_mock.set_password = set_password
            keyring_mock.delete_password = delete_password

            yield keyring_mock

    @pytest.fixture
    def service(self, mock_keyring):
        """Create a KeyringService with mocked backend."""
        from core.infrastructure.keyring_service import KeyringService
        svc = KeyringService(provider_ids=("gemini", "ollama"))
        svc._available = True
        svc._keyring_module = mock_keyring
        return svc

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("OLLAMA_API_KEY", raising=False)

    def test_store_and_get_credential(self, service, mock_keyring):
        """Test storing and retrieving a credential."""
        assert service.store_credential("gemini", "test-key-123")
        assert service.get_credential("gemini") == "test-key-123"
        assert mock_keyring._storage == {("nota", "gemini_api_key"): "test-key-123"}

    def test_get_credential_not_found(self, service):
        """Test getting a non-existent credential."""
        assert service.get_credential("gemini") is None

    def test_has_credential(self, service):
        assert not service.has_credential("gemini")
        service.store_credential("gemini", "test-key")
        assert service.has_credential("gemini")

    def test_delete_credential(self, service):
        service.store_credential("gemini", "test-key")
        assert service.delete_credential("gemini")
        assert not service.has_credential("gemini")

    def test_delete_nonexistent_credential(self, service):
        assert not service.delete_credential("gemini")

    def test_credential_name_normalization(self, service):
        """Test that credential names are normalized."""
        service.store_credential("gemini", "key1")
        service.store_credential("GEMINI", "key2")  # Should overwrite
        assert service.get_credential("gemini") == "key2"

    def test_naming_helpers(self):
        from core.infrastructure.keyring_service import KeyringService

        assert KeyringService.credential_name("Gemini") == "gemini_api_key"
        assert KeyringService.credential_name("gemini_api_key") == "gemini_api_key"
        assert KeyringService.env_var_name("gemini") == "GEMINI_API_KEY"
        assert KeyringService.env_var_name("web-llm") == "WEB_LLM_API_KEY"

    def test_env_var_fallback(self, service):
        """Test environment variable fallback when keyring is unavailable."""
        service._available = False

        with patch.dict(os.environ, {"GEMINI_API_KEY": "env-key-123"}):
            assert service.get_credential("gemini") == "env-key-123"

    def test_env_var_used_when_keyring_empty(self, service):
        with patch.dict(os.environ, {"GEMINI_API_KEY": "env-key-456"}):
            assert service.get_credential("gemini") == "env-key-456"

    def test_keyring_takes_precedence_over_env(self, service):
        service.store_credential("gemini", "keyring-key")

        with patch.dict(os.environ, {"GEMINI_API_KEY": "env-key"}):
            assert service.get_credential("gemini") == "keyring-key"

    def test_get_all_credentials(self, service):
        service.store_credential("gemini", "key1")

        all_creds = service.get_all_credentials()
        assert all_creds == {"gemini": "key1", "ollama": None}

    def test_has_any_credentials(self, service):
        assert not service.has_any_credentials()
        service.store_credential("ollama", "key")
        assert service.has_any_credentials()

    def test_backend_errors_fall_back_to_env(self, service, mock_keyring):
        mock_keyring.get_password = MagicMock(side_effect=RuntimeError("locked"))

        with patch.dict(os.environ, {"GEMINI_API_KEY": "env-key"}):
            assert service.get_credential("gemini") == "env-key"


class TestKeyringAvailability:
    """Tests for keyring availability detection."""

    def test_fail_backend_is_unavailable(self):
        from keyring.backends.fail import Keyring as FailKeyring
        from core.infrastructure.keyring_service import KeyringService

        with patch("keyring.get_keyring", return_value=FailKeyring()):
            svc = KeyringService()
            assert svc.is_available is False
            assert not svc.store_credential("gemini", "value")

    def test_store_fails_gracefully_when_unavailable(self):
        from core.infrastructure.keyring_service import KeyringService

        svc = KeyringService()
        svc._available = False

        assert not svc.store_credential("gemini", "key")

    def test_delete_fails_gracefully_when_unavailable(self):
        from core.infrastructure.keyring_service import KeyringService

        svc = KeyringService()
        svc._available = False

        assert not svc.delete_credential("gemini")

    def test_singleton(self):
        from core.infrastructure.keyring_service import get_keyring_service

        assert get_keyring_service() is get_keyring_service()
