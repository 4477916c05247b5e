"""Tests for spendlens.cli — argument parsing and command handlers.

Handlers run against a real SQLite file in tmp_path and the fixture
config directory; the watch command is exercised with a mocked watcher.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from spendlens.cli import _build_parser, _make_claude_fn, main
from spendlens.database.repository import Repository
from tests.conftest import FIXTURE_CONFIG_DIR, FIXTURES_DIR


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("SPENDLENS_DB_PATH", str(tmp_path / "spendlens.db"))
    monkeypatch.setenv("SPENDLENS_CONFIG_DIR", str(FIXTURE_CONFIG_DIR))
    monkeypatch.setenv("SPENDLENS_WATCH_DIR", str(tmp_path / "inbox"))
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    return tmp_path


def _run(argv, capsys):
    """Run main() and return (exit code, parsed stdout JSON or raw text)."""
    with patch("spendlens.cli._setup_logging"):
        with pytest.raises(SystemExit) as exc:
            main(argv)
    out = capsys.readouterr()
    try:
        data = json.loads(out.out)
    except json.JSONDecodeError:
        data = out.out
    return exc.value.code, data, out.err


def _ingest(env, capsys, user="u1"):
    code, data, _ = _run(["ingest", str(FIXTURES_DIR / "statement.json"), "--user", user], capsys)
    assert code == 0
    return data


# ── Parsing & dispatch ───────────────────────────────────


class TestParser:
    def test_all_subcommands_present(self):
        help_text = _build_parser().format_help()
        for cmd in ["ingest", "watch", "link-transfers", "resolve-categories",
                    "resolve-vendors", "correct-vendor", "correct-category",
                    "mappings", "cleanup-mappings", "categories", "retry"]:
            assert cmd in help_text, f"Subcommand '{cmd}' not in help output"

    def test_ingest_requires_user(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["ingest", "f.json"])

    def test_resolve_requires_ids(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["resolve-categories", "--user", "u1"])

    def test_mapping_add_defaults(self):
        args = _build_parser().parse_args(["mappings", "add", "--user", "u1", "XYZ", "Xyz"])
        assert args.confidence == 0.95


class TestMainDispatch:
    def test_dispatches_to_handler(self):
        handler = MagicMock(return_value=0)
        with patch.dict("spendlens.cli._COMMANDS", {"link-transfers": handler}), \
             patch("spendlens.cli._setup_logging"):
            with pytest.raises(SystemExit) as exc:
                main(["link-transfers", "--user", "u1"])
        assert exc.value.code == 0
        handler.assert_called_once()

    def test_no_command_shows_help(self, capsys):
        with patch("spendlens.cli._setup_logging"):
            with pytest.raises(SystemExit) as exc:
                main([])
        assert exc.value.code == 0
        assert "usage" in capsys.readouterr().out.lower()


class TestClaudeFn:
    def test_none_without_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert _make_claude_fn() is None

    def test_calls_messages_api(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        client = MagicMock()
        client.messages.create.return_value.content = [MagicMock(text='{"ok": true}')]
        with patch("anthropic.Anthropic", return_value=client):
            fn = _make_claude_fn()
            assert fn("system", "prompt") == '{"ok": true}'
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]


# ── ingest / link-transfers ──────────────────────────────


class TestIngest:
    def test_ingest_prints_batch_result(self, env, capsys):
        data = _ingest(env, capsys)
        assert data["status"] == "completed"
        assert data["inserted"] == 5
        assert data["transfers_linked"] == 1

    def test_reingest_is_duplicate(self, env, capsys):
        _ingest(env, capsys)
        data = _ingest(env, capsys)
        assert data["status"] == "duplicate"

    def test_missing_file(self, env, capsys):
        code, _, err = _run(["ingest", str(env / "nope.json"), "--user", "u1"], capsys)
        assert code == 1
        assert "not found" in err.lower()

    def test_unreadable_file_exits_nonzero(self, env, capsys):
        bad = env / "bad.json"
        bad.write_text("{oops")
        code, data, _ = _run(["ingest", str(bad), "--user", "u1"], capsys)
        assert code == 1
        assert data["status"] == "failed"

    def test_retry_failed_import(self, env, capsys):
        file_id = _ingest(env, capsys)["file_id"]
        repo = Repository(str(env / "spendlens.db"))
        repo.update_file_status(file_id, "failed", error_message="crashed")
        repo.close()

        code, data, _ = _run(["retry", file_id, "--user", "u1"], capsys)
        assert code == 0
        assert data["status"] == "completed"
        assert data["file_id"] == file_id
        assert data["duplicates"] == 5

    def test_retry_completed_file_exits_nonzero(self, env, capsys):
        file_id = _ingest(env, capsys)["file_id"]
        code, _, err = _run(["retry", file_id, "--user", "u1"], capsys)
        assert code == 1
        assert "only failed" in err

    def test_retry_unknown_file(self, env, capsys):
        code, _, err = _run(["retry", "nope", "--user", "u1"], capsys)
        assert code == 1
        assert "nope" in err

    def test_link_transfers(self, env, capsys):
        _ingest(env, capsys)
        code, data, _ = _run(["link-transfers", "--user", "u1"], capsys)
        assert code == 0
        assert data == {"linked": 0}


class TestWatch:
    def test_watch_starts_and_stops(self, env, capsys):
        watcher = MagicMock()
        watcher.watch_dir = env / "inbox"
        with patch("spendlens.watcher.observer.FileWatcher", return_value=watcher) as cls, \
             patch("spendlens.cli.time.sleep", side_effect=KeyboardInterrupt):
            code, _, _ = _run(["watch", "--user", "u1"], capsys)
        assert code == 0
        assert cls.call_args.kwargs["user_id"] == "u1"
        watcher.start.assert_called_once()
        watcher.stop.assert_called_once()


# ── resolution & corrections ─────────────────────────────


class TestResolution:
    def test_resolve_categories(self, env, capsys):
        txn_ids = _ingest(env, capsys)["transaction_ids"]

        code, data, _ = _run(["resolve-categories", "--user", "u1", *txn_ids[:3], "missing"],
                             capsys)
        assert code == 0
        assert data["stats"]["total"] == 4
        assert data["stats"]["failed"] == 1
        assert data["results"][-1]["error"]["code"] == "NOT_FOUND"

    def test_too_many_ids(self, env, capsys):
        code, _, err = _run(["resolve-vendors", "--user", "u1", *[f"t{i}" for i in range(6)]],
                            capsys)
        assert code == 1
        assert "Between 1 and 5" in err

    def test_correct_vendor_and_category(self, env, capsys):
        # the fifth statement line is the fuel purchase
        txn_id = _ingest(env, capsys)["transaction_ids"][4]

        code, data, _ = _run(["correct-vendor", "--user", "u1", txn_id, "Indian Oil"], capsys)
        assert code == 0
        assert data["vendor_name"] == "Indian Oil"

        code, data, _ = _run(["correct-category", "--user", "u1", txn_id, "travel"], capsys)
        assert code == 0
        assert data["category_id"] == "travel"
        assert data["categorization_source"] == "user"

    def test_correct_unknown_transaction(self, env, capsys):
        code, _, err = _run(["correct-vendor", "--user", "u1", "missing", "X"], capsys)
        assert code == 1
        assert "not found" in err.lower()


# ── mappings & categories ────────────────────────────────


class TestMappings:
    def test_crud(self, env, capsys):
        code, created, _ = _run(["mappings", "add", "--user", "u1", "XYZPAY 123", "cred"], capsys)
        assert code == 0
        assert created["mapped_name"] == "Cred"
        assert created["original_text"] == "xyzpay 123"

        code, listed, _ = _run(["mappings", "list", "--user", "u1"], capsys)
        assert [m["id"] for m in listed] == [created["id"]]

        code, updated, _ = _run(
            ["mappings", "update", "--user", "u1", created["id"], "--confidence", "0.7"], capsys)
        assert updated["confidence"] == 0.7

        code, _, _ = _run(["mappings", "add", "--user", "u1", "xyzpay 123", "Other"], capsys)
        assert code == 1

        code, _, err = _run(["mappings", "delete", "--user", "u2", created["id"]], capsys)
        assert code == 1

        code, data, _ = _run(["mappings", "delete", "--user", "u1", created["id"]], capsys)
        assert code == 0
        assert data == {"deleted": created["id"]}

    def test_invalid_confidence(self, env, capsys):
        code, _, err = _run(
            ["mappings", "add", "--user", "u1", "x", "X", "--confidence", "2"], capsys)
        assert code == 1
        assert "confidence" in err

    def test_cleanup(self, env, capsys):
        code, data, _ = _run(["cleanup-mappings"], capsys)
        assert code == 0
        assert data == {"vendor_mappings_deleted": 0, "category_mappings_deleted": 0}


class TestCategories:
    def test_add_list_delete(self, env, capsys):
        code, cat, _ = _run(
            ["categories", "add", "--user", "u1", "Takeout", "--parent", "food-dining"], capsys)
        assert code == 0
        assert cat["parent_id"] == "food-dining"

        code, listed, _ = _run(["categories", "list", "--user", "u1"], capsys)
        assert cat["id"] in {c["id"] for c in listed}

        code, _, err = _run(["categories", "delete", "--user", "u1", "food-dining"], capsys)
        assert code == 1
        assert "System categories" in err

        code, data, _ = _run(["categories", "delete", "--user", "u1", cat["id"]], capsys)
        assert code == 0
