from datetime import datetime
from pydantic import BaseModel
from typing import List, Optional

class TaskSummary(BaseModel):
    name: str
    method: str
    success_status_codes: List[int]
    last_execute_time: Optional[datetime] = None

class DefinitionProblem(BaseModel):
    task: Optional[str] = None
    error: str

class TaskListResponse(BaseModel):
    tasks: List[TaskSummary]
    errors: List[DefinitionProblem]

class RunResponse(BaseModel):
    task_name: str
    run_id: str
