from fastapi import APIRouter, Depends, HTTPException
from ..auth import require_token
from ..errors import PersistenceError
from ..models import DefinitionProblem, RunResponse, TaskListResponse, TaskSummary
from ..services.runtime import Runtime, get_runtime
from ..storage.schema import ExecutionRecord
from worker.celery_app import run_task

router = APIRouter()

@router.get("/tasks", response_model=TaskListResponse)
async def list_tasks(runtime: Runtime = Depends(get_runtime), _=Depends(require_token)):
    try:
        watermarks = {rec.task_name: rec.last_execute_time for rec in runtime.store.records()}
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    tasks = []
    for task in runtime.config.tasks:
        tasks.append(TaskSummary(
            name=task.name,
            method=task.method.value,
            success_status_codes=sorted(task.success_status_codes),
            last_execute_time=watermarks.get(task.name),
        ))
    errors = [DefinitionProblem(task=err.task_name, error=str(err)) for err in runtime.config.errors]
    return TaskListResponse(tasks=tasks, errors=errors)

@router.get("/tasks/{name}/state", response_model=ExecutionRecord)
async def get_state(name: str, runtime: Runtime = Depends(get_runtime), _=Depends(require_token)):
    if runtime.config.get(name) is None:
        raise HTTPException(status_code=404, detail="Unknown task")
    ts = _watermark(runtime, name)
    if ts is None:
        raise HTTPException(status_code=404, detail="Task has not succeeded yet")
    return ExecutionRecord(task_name=name, last_execute_time=ts)

@router.post("/tasks/{name}/run", response_model=RunResponse)
async def run_now(name: str, runtime: Runtime = Depends(get_runtime), _=Depends(require_token)):
    if runtime.config.get(name) is None:
        raise HTTPException(status_code=404, detail="Unknown task")
    async_result = run_task.delay(name)
    return RunResponse(task_name=name, run_id=async_result.id)

def _watermark(runtime: Runtime, name: str):
    try:
        return runtime.store.get(name)
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
