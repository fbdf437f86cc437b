import asyncio
import base64

import pytest
from typer.testing import CliRunner

from sanitizeflow.cli import app
from sanitizeflow.persistence import (
    SQLiteWorkflowRepository,
    StepError,
    StepRecord,
    WorkflowState,
    WorkflowStatus,
)


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "wf.db"
    monkeypatch.setenv("SANITIZEFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("SANITIZEFLOW_DATABASE_URL", f"sqlite://{path}")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    return path


def _seed(path):
    repo = SQLiteWorkflowRepository(path)

    async def _populate():
        await repo.create_workflow("wf-done", "invoice.docx")
        await repo.set_transaction_id("wf-done", "txn-1")
        await repo.append_step("wf-done", StepRecord(step_name="classify", result={"type_label": "docx"}))
        await repo.append_step(
            "wf-done",
            StepRecord(
                step_name="rebuild",
                error=StepError(type="RetryExhaustedError", message="gave up", attempts=5),
                attempts=5,
            ),
        )
        await repo.update_state("wf-done", WorkflowState.NOTIFICATION_SENT)
        await repo.mark_workflow_completed("wf-done")
        await repo.create_workflow("wf-pending", "archive.zip")

    asyncio.run(_populate())
    repo.close()


def test_workflow_list_shows_all_instances(db_path):
    _seed(db_path)

    result = CliRunner().invoke(app, ["workflow", "list"])

    assert result.exit_code == 0, result.output
    assert "wf-done\tinvoice.docx\tcompleted\tnotification_sent" in result.stdout
    assert "wf-pending\tarchive.zip\trunning\tstart" in result.stdout


def test_workflow_list_filters_by_status(db_path):
    _seed(db_path)

    result = CliRunner().invoke(app, ["workflow", "list", "--status", "running"])

    assert result.exit_code == 0, result.output
    assert "wf-pending" in result.stdout
    assert "wf-done" not in result.stdout


def test_workflow_list_empty(db_path):
    result = CliRunner().invoke(app, ["workflow", "list"])
    assert result.exit_code == 0, result.output
    assert "No workflows found" in result.stdout


def test_workflow_show_prints_history(db_path):
    _seed(db_path)

    result = CliRunner().invoke(app, ["workflow", "show", "wf-done"])

    assert result.exit_code == 0, result.output
    output = result.stdout
    assert "Workflow wf-done: completed (notification_sent)" in output
    assert "Transaction: txn-1" in output
    assert "- classify: ok (attempts=1" in output
    assert "- rebuild: error RetryExhaustedError: gave up (attempts=5" in output


def test_workflow_show_missing(db_path):
    result = CliRunner().invoke(app, ["workflow", "show", "nope"])
    assert result.exit_code == 1
    assert "Workflow not found" in result.stdout


def test_resume_with_nothing_pending(db_path, tmp_path):
    key = base64.b64encode(b"local-test-key").decode()
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
storage:
  account_name: acct
  account_key: {key}
"""
    )

    result = CliRunner().invoke(app, ["resume", "--config", str(config_path)])

    assert result.exit_code == 0, result.output
    assert "No pending workflows" in result.stdout


def test_workflow_commands_read_database_from_config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("SANITIZEFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("SANITIZEFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    path = tmp_path / "configured.db"
    _seed(path)
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"database_url: sqlite://{path}\n")

    listed = CliRunner().invoke(app, ["workflow", "list", "--config", str(config_path)])
    shown = CliRunner().invoke(app, ["workflow", "show", "wf-done", "--config", str(config_path)])

    assert listed.exit_code == 0, listed.output
    assert "wf-done\tinvoice.docx\tcompleted" in listed.stdout
    assert "wf-pending\tarchive.zip\trunning" in listed.stdout
    assert shown.exit_code == 0, shown.output
    assert "Transaction: txn-1" in shown.stdout
