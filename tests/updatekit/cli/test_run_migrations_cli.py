"""Integration tests for the run-migrations / updatekit CLI."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from updatekit.cli import app, run_migrations_app
from updatekit.collaborators import SqliteEntityStore
from updatekit.engine import SqliteStore, StepError
from updatekit.steps import seed_content_step
from updatekit.settings import DATABASE_ENV_VAR


@pytest.fixture
def runner():
    """Create CLI runner."""
    return CliRunner()


@pytest.fixture
def project(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(DATABASE_ENV_VAR, raising=False)
    (tmp_path / "updatekit.yaml").write_text(
        "database: state.db\navailable_modules:\n  - media_crop\n", encoding="utf-8"
    )
    return tmp_path


def _json(result) -> dict:
    return json.loads(result.stdout)


class TestRunMigrations:
    def test_nothing_pending(self, runner, project, registry_restore):
        result = runner.invoke(run_migrations_app, [])
        assert result.exit_code == 0
        assert "No pending update steps" in result.stdout

    def test_applies_steps_and_exits_zero(self, runner, project, registry_restore):
        registry_restore.register("m", 1, [], lambda ctx, progress: None, description="First")
        registry_restore.register("m", 2, [("m", 1)], lambda ctx, progress: None, description="Second")

        result = runner.invoke(run_migrations_app, ["--json"])

        assert result.exit_code == 0
        payload = _json(result)
        assert [r["status"] for r in payload["results"]] == ["completed", "completed"]
        assert payload["remaining"] == 0
        assert SqliteStore(project / "state.db").get_watermark("m") == 2

    def test_step_limit_zero_does_not_claim_nothing_pending(self, runner, project, registry_restore):
        registry_restore.register("m", 1, [], lambda ctx, progress: None)
        result = runner.invoke(run_migrations_app, ["--step-limit", "0"])
        assert result.exit_code == 0
        assert "No pending update steps" not in result.stdout
        assert "1 step(s) still pending" in result.stdout

    def test_entities_persist_between_invocations(self, runner, project, registry_restore):
        registry_restore.register(
            "site", 1, [], seed_content_step("menu_link", [{"title": "Albums"}], key="title")
        )
        first = runner.invoke(run_migrations_app, [])
        assert first.exit_code == 0

        def needs_menu_links(ctx, progress):
            if not ctx.entities.query("menu_link", title="Albums"):
                raise StepError("menu link missing")

        registry_restore.register("site", 2, [], needs_menu_links)
        second = runner.invoke(run_migrations_app, ["--json"])
        assert second.exit_code == 0
        assert _json(second)["results"][0]["status"] == "completed"
        assert SqliteEntityStore(project / "state.db").query("menu_link") == [1]

    def test_failed_step_exits_one(self, runner, project, registry_restore):
        def broken(ctx, progress):
            raise StepError("bad data")

        registry_restore.register("m", 1, [], broken)
        result = runner.invoke(run_migrations_app, [])
        assert result.exit_code == 1
        assert "bad data" in result.stdout

    def test_cycle_exits_two(self, runner, project, registry_restore):
        registry_restore.register("a", 1, [("b", 1)], lambda ctx, progress: None)
        registry_restore.register("b", 1, [("a", 1)], lambda ctx, progress: None)
        result = runner.invoke(run_migrations_app, ["--json"])
        assert result.exit_code == 2
        assert "Cyclic" in _json(result)["error"]

    def test_step_limit_leaves_work_for_next_run(self, runner, project, registry_restore):
        def three_calls(ctx, progress):
            progress["n"] = progress.get("n", 0) + 1
            return progress["n"] / 3

        registry_restore.register("media", 1, [], three_calls)

        first = runner.invoke(run_migrations_app, ["--step-limit", "2", "--json"])
        assert first.exit_code == 0
        assert _json(first)["results"][0]["status"] == "in_progress"
        assert _json(first)["remaining"] == 1

        second = runner.invoke(run_migrations_app, ["--json"])
        assert _json(second)["results"][0]["status"] == "completed"
        assert _json(second)["results"][0]["invocations"] == 1

    def test_module_option(self, runner, project, registry_restore):
        registry_restore.register("a", 1, [], lambda ctx, progress: None)
        registry_restore.register("b", 1, [], lambda ctx, progress: None)
        result = runner.invoke(run_migrations_app, ["--module", "b", "--json"])
        assert [r["module"] for r in _json(result)["results"]] == ["b"]

    def test_sources_are_imported(self, runner, project, registry_restore, monkeypatch):
        package_dir = project / "cli_sources_demo"
        package_dir.mkdir()
        (package_dir / "__init__.py").write_text("", encoding="utf-8")
        (package_dir / "updates.py").write_text(
            "from updatekit import update_step\n"
            "from updatekit.steps import install_modules_step\n"
            "update_step('demo', 1)(install_modules_step('media_crop'))\n",
            encoding="utf-8",
        )
        monkeypatch.syspath_prepend(str(project))
        (project / "updatekit.yaml").write_text(
            "database: state.db\n"
            "sources:\n  - cli_sources_demo.updates\n"
            "available_modules:\n  - media_crop\n",
            encoding="utf-8",
        )

        result = runner.invoke(run_migrations_app, ["--json"])
        assert result.exit_code == 0
        assert _json(result)["results"][0]["module"] == "demo"

    def test_unimportable_source_exits_two(self, runner, project, registry_restore):
        (project / "updatekit.yaml").write_text(
            "database: state.db\nsources:\n  - no_such_module_for_updatekit\n", encoding="utf-8"
        )
        result = runner.invoke(run_migrations_app, [])
        assert result.exit_code == 2
        assert "no_such_module_for_updatekit" in result.stdout


class TestUpdatekitCommands:
    def test_status_json(self, runner, project, registry_restore):
        registry_restore.register("m", 1, [], lambda ctx, progress: None)
        registry_restore.register("m", 2, [], lambda ctx, progress: 0.5)
        runner.invoke(app, ["run", "--step-limit", "2"])

        result = runner.invoke(app, ["status", "--json"])
        assert result.exit_code == 0
        assert _json(result) == [
            {"module": "m", "watermark": 1, "pending": [2], "in_flight": {"2": 0.5}}
        ]

    def test_status_table(self, runner, project, registry_restore):
        registry_restore.register("m", 1, [], lambda ctx, progress: None)
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Update status" in result.stdout

    def test_status_reports_registration_error(self, runner, project, registry_restore, monkeypatch):
        package_dir = project / "status_duplicate_demo"
        package_dir.mkdir()
        (package_dir / "__init__.py").write_text("", encoding="utf-8")
        (package_dir / "updates.py").write_text(
            "from updatekit import update_step\n"
            "update_step('demo', 1)(lambda ctx, progress: None)\n"
            "update_step('demo', 1)(lambda ctx, progress: None)\n",
            encoding="utf-8",
        )
        monkeypatch.syspath_prepend(str(project))
        (project / "updatekit.yaml").write_text(
            "database: state.db\nsources:\n  - status_duplicate_demo.updates\n", encoding="utf-8"
        )

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "already registered" in result.stdout
        assert isinstance(result.exception, SystemExit)

    def test_init_writes_settings(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["init", "--source", "mysite.updates"])
        assert result.exit_code == 0
        text = (tmp_path / "updatekit.yaml").read_text(encoding="utf-8")
        assert "mysite.updates" in text

        again = runner.invoke(app, ["init"])
        assert again.exit_code == 1
