"""
Tests for configuration loading.
"""

import pytest

from pocket_ledger.config import (
    AppSettings,
    GoogleSheetsSettings,
    LedgerSettings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)


SHEETS_ENV = ("GOOGLE_SHEETS_CREDENTIALS_PATH", "GOOGLE_SHEETS_SPREADSHEET_ID")


class TestSettings:
    """Tests for environment-driven settings."""

    def test_ledger_env_prefix(self, monkeypatch):
        monkeypatch.setenv("LEDGER_BOOK_ID", "family")
        monkeypatch.setenv("LEDGER_DEFAULT_CURRENCY", "EUR")
        settings = LedgerSettings()
        assert settings.book_id == "family"
        assert settings.default_currency == "EUR"

    def test_sync_defaults(self, monkeypatch):
        for name in ("SYNC_MAX_ATTEMPTS", "SYNC_OUTBOX_PATH"):
            monkeypatch.delenv(name, raising=False)
        settings = SyncSettings()
        assert settings.max_attempts == 3
        assert settings.outbox_path is None

    def test_backoff_bounds(self):
        """Test that an inverted backoff window is rejected."""
        with pytest.raises(ValueError):
            SyncSettings(backoff_min=5, backoff_max=1)

    def test_max_attempts_bounds(self):
        with pytest.raises(ValueError):
            SyncSettings(max_attempts=0)

    def test_log_level_must_be_known(self):
        with pytest.raises(ValueError):
            AppSettings(log_level="LOUD")

    def test_missing_credentials_file_warns(self, tmp_path):
        """Test that a missing credentials file warns instead of failing."""
        with pytest.warns(UserWarning):
            settings = GoogleSheetsSettings(
                credentials_path=str(tmp_path / "absent.json"),
                spreadsheet_id="sheet-1",
            )
        assert settings.spreadsheet_id == "sheet-1"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_validate_all_settings_reports_missing_sections(self, monkeypatch):
        """Test that unconfigured Google Sheets is reported, not raised."""
        for name in SHEETS_ENV:
            monkeypatch.delenv(name, raising=False)

        results = validate_all_settings()

        assert results["ledger"] is True
        assert results["sync"] is True
        assert results["google_sheets"] is False
        assert "google_sheets_error" in results


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
