from datetime import datetime

from pydantic import BaseModel


class ExecutionRecord(BaseModel):
    task_name: str
    last_execute_time: datetime  # timestamp of the last successful execution
