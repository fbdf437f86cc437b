import uuid

import pytest

from sanitizeflow.persistence import (
    InMemoryWorkflowRepository,
    SQLiteWorkflowRepository,
    StepError,
    StepRecord,
    WorkflowState,
    WorkflowStatus,
    get_repository,
)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        yield InMemoryWorkflowRepository()
    else:
        repository = SQLiteWorkflowRepository(tmp_path / "wf.db")
        yield repository
        repository.close()


@pytest.mark.asyncio
async def test_repository_lifecycle(repo):
    instance_id = str(uuid.uuid4())
    created = await repo.create_workflow(instance_id, "invoice.docx")
    assert created.status == WorkflowStatus.RUNNING
    assert created.state == WorkflowState.START

    await repo.set_transaction_id(instance_id, "txn-1")
    await repo.append_step(
        instance_id, StepRecord(step_name="transaction_id", result={"value": "txn-1"})
    )
    await repo.append_step(
        instance_id,
        StepRecord(
            step_name="classify",
            input={"resource_uri": "https://store.test/a"},
            result={"type_label": "docx"},
            attempts=2,
        ),
    )
    await repo.update_state(instance_id, WorkflowState.CLASSIFIED)
    await repo.mark_workflow_completed(instance_id)

    wf = await repo.get_workflow(instance_id)
    assert wf is not None
    assert wf.object_id == "invoice.docx"
    assert wf.transaction_id == "txn-1"
    assert wf.status == WorkflowStatus.COMPLETED
    assert wf.state == WorkflowState.CLASSIFIED
    assert [s.step_name for s in wf.history] == ["transaction_id", "classify"]
    classify = wf.step("classify")
    assert classify.input == {"resource_uri": "https://store.test/a"}
    assert classify.result == {"type_label": "docx"}
    assert classify.attempts == 2


@pytest.mark.asyncio
async def test_duplicate_step_is_ignored(repo):
    await repo.create_workflow("wf-1", "a.docx")
    await repo.append_step("wf-1", StepRecord(step_name="classify", result={"type_label": "docx"}))
    await repo.append_step("wf-1", StepRecord(step_name="classify", result={"type_label": "pdf"}))

    wf = await repo.get_workflow("wf-1")
    assert len(wf.history) == 1
    assert wf.history[0].result == {"type_label": "docx"}


@pytest.mark.asyncio
async def test_recorded_error_round_trips(repo):
    await repo.create_workflow("wf-1", "a.docx")
    await repo.append_step(
        "wf-1",
        StepRecord(
            step_name="rebuild",
            error=StepError(type="RetryExhaustedError", message="gave up", retryable=True, attempts=5),
            attempts=5,
        ),
    )

    record = (await repo.get_workflow("wf-1")).step("rebuild")
    assert record.failed
    assert record.result is None
    assert record.error.type == "RetryExhaustedError"
    assert record.error.attempts == 5


@pytest.mark.asyncio
async def test_transaction_id_is_set_once(repo):
    await repo.create_workflow("wf-1", "a.docx")
    await repo.set_transaction_id("wf-1", "first")
    await repo.set_transaction_id("wf-1", "second")
    assert (await repo.get_workflow("wf-1")).transaction_id == "first"


@pytest.mark.asyncio
async def test_create_duplicate_instance_rejected(repo):
    await repo.create_workflow("wf-1", "a.docx")
    with pytest.raises(ValueError):
        await repo.create_workflow("wf-1", "a.docx")


@pytest.mark.asyncio
async def test_list_filters_by_status(repo):
    await repo.create_workflow("wf-1", "a.docx")
    await repo.create_workflow("wf-2", "b.docx")
    await repo.mark_workflow_completed("wf-1")
    await repo.append_step("wf-2", StepRecord(step_name="transaction_id", result={"value": "t"}))

    running = await repo.list_workflows(status=WorkflowStatus.RUNNING)
    assert [wf.id for wf in running] == ["wf-2"]
    assert running[0].history == []
    assert {wf.id for wf in await repo.list_workflows()} == {"wf-1", "wf-2"}


@pytest.mark.asyncio
async def test_missing_workflow_is_none(repo):
    assert await repo.get_workflow("nope") is None


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(tmp_path):
    path = tmp_path / "wf.db"
    repo = SQLiteWorkflowRepository(path)
    await repo.create_workflow("wf-1", "a.docx")
    await repo.append_step("wf-1", StepRecord(step_name="fingerprint", result={"digest": "abc", "size": 3}))
    repo.close()

    reopened = SQLiteWorkflowRepository(path)
    wf = await reopened.get_workflow("wf-1")
    assert wf.step("fingerprint").result == {"digest": "abc", "size": 3}
    reopened.close()


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("SANITIZEFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    assert isinstance(get_repository(""), InMemoryWorkflowRepository)
    sqlite_repo = get_repository(f"sqlite://{tmp_path / 'wf.db'}")
    assert isinstance(sqlite_repo, SQLiteWorkflowRepository)
    sqlite_repo.close()
    with pytest.raises(ValueError):
        get_repository("mysql://localhost/db")


def test_get_repository_reads_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("SANITIZEFLOW_DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")
    repo = get_repository()
    assert isinstance(repo, SQLiteWorkflowRepository)
    repo.close()
