"""Tests for aikotoba.cli — command line interface."""

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest

from aikotoba.cli import main
from aikotoba.db.migrate import MigrationStatus
from aikotoba.vault.errors import StoreUnavailable


class TestCli:
    def test_version(self, capsys):
        rc = main(["version"])
        assert rc == 0
        out = capsys.readouterr().out
        assert "aikotoba" in out
        assert "0.1.0" in out

    def test_version_flag(self, capsys):
        assert main(["--version"]) == 0
        assert "aikotoba" in capsys.readouterr().out

    def test_no_args(self):
        assert main([]) == 0

    def test_serve_without_uvicorn(self, capsys, monkeypatch):
        """If uvicorn isn't installed, serve should return 1 with error."""
        import builtins

        real_import = builtins.__import__

        def mock_import(name, *args, **kwargs):
            if name == "uvicorn":
                raise ImportError("no uvicorn")
            return real_import(name, *args, **kwargs)

        monkeypatch.setattr(builtins, "__import__", mock_import)
        assert main(["serve"]) == 1
        assert "uvicorn" in capsys.readouterr().out.lower()

    def test_serve(self):
        with patch("uvicorn.run") as mock_run:
            assert main(["serve", "--host", "0.0.0.0", "--port", "9300"]) == 0
        mock_run.assert_called_once_with("aikotoba.api.app:app", host="0.0.0.0", port=9300)


class TestMigrate:
    def test_apply(self, capsys):
        with patch("aikotoba.db.migrate.apply", return_value=["001", "002"]) as mock_apply:
            assert main(["migrate"]) == 0
        mock_apply.assert_called_once_with(dry_run=False)
        assert "Applied 2 migration(s)" in capsys.readouterr().out

    def test_dry_run(self, capsys):
        with patch("aikotoba.db.migrate.apply", return_value=["002"]) as mock_apply:
            assert main(["migrate", "--dry-run"]) == 0
        mock_apply.assert_called_once_with(dry_run=True)
        assert "Would apply 1" in capsys.readouterr().out

    def test_up_to_date(self, capsys):
        with patch("aikotoba.db.migrate.apply", return_value=[]):
            assert main(["migrate"]) == 0
        assert "up to date" in capsys.readouterr().out

    def test_dry_run_and_status_exclusive(self):
        with pytest.raises(SystemExit):
            main(["migrate", "--dry-run", "--status"])

    def test_status(self, capsys):
        rows = [
            MigrationStatus("001", "001_vault.sql", "applied", datetime(2026, 3, 14, tzinfo=UTC)),
            MigrationStatus("002", "002_notifications.sql", "pending"),
        ]
        with patch("aikotoba.db.migrate.status", return_value=rows):
            assert main(["migrate", "--status"]) == 0
        out = capsys.readouterr().out
        assert "001_vault.sql" in out
        assert "pending" in out

    def test_failure(self, capsys):
        with patch("aikotoba.db.migrate.apply", side_effect=ConnectionError("no db")):
            assert main(["migrate"]) == 1
        assert "AIKOTOBA_DB_" in capsys.readouterr().out


class TestSweep:
    def test_sweep(self, capsys):
        service = MagicMock()
        service.sweep_expired_grace.return_value = ["e1", "e2"]
        with patch("aikotoba.vault.build_service", return_value=service), patch(
            "aikotoba.events.bus.publish"
        ) as mock_publish:
            assert main(["sweep"]) == 0
        assert "Expired 2 grace period(s)" in capsys.readouterr().out
        stream, event_type, payload = mock_publish.call_args.args
        assert (stream, event_type) == ("system", "system.sweep")
        assert payload["entry_ids"] == ["e1", "e2"]
        assert payload["count"] == 2
        assert mock_publish.call_args.kwargs["event_id"].startswith("sweep:")

    def test_store_down(self):
        service = MagicMock()
        service.sweep_expired_grace.side_effect = StoreUnavailable("down")
        with patch("aikotoba.vault.build_service", return_value=service), patch(
            "aikotoba.events.bus.publish"
        ) as mock_publish:
            assert main(["sweep"]) == 1
        mock_publish.assert_not_called()


class TestConsume:
    def test_runs_inbox_consumer(self):
        with patch("aikotoba.events.consumers.inbox.InboxConsumer") as mock_cls:
            assert main(["consume", "--max-iterations", "2"]) == 0
        mock_cls.return_value.run.assert_called_once_with(max_iterations=2)


class TestAudit:
    def test_prints_json_lines(self, capsys):
        from aikotoba.audit.logger import AuditRecord

        record = AuditRecord(
            7, datetime(2026, 3, 14, tzinfo=UTC), "vault.stolen", "vault", "device:t", "stolen e1", None, "entry:e1", "ok"
        )
        with patch("aikotoba.audit.logger.query_log", return_value=[record]) as mock_query:
            assert main(["audit", "--entry", "e1", "--limit", "5"]) == 0
        mock_query.assert_called_once_with(entry_id="e1", event_type=None, limit=5)
        assert '"eventType": "vault.stolen"' in capsys.readouterr().out

    def test_db_down(self, capsys):
        with patch("aikotoba.audit.logger.query_log", side_effect=ConnectionError("down")):
            assert main(["audit"]) == 1
        assert "audit log" in capsys.readouterr().out
