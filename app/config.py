from pydantic import BaseModel
import os

class Settings(BaseModel):
    api_token: str = os.getenv("API_TOKEN", "change-me")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    tasks_config_path: str = os.getenv("TASKS_CONFIG_PATH", "config/config.yaml")
    state_backend: str = os.getenv("STATE_BACKEND", "redis")  # redis | memory
    request_timeout_seconds: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", 30))
    schedule_interval_seconds: float = float(os.getenv("SCHEDULE_INTERVAL_SECONDS", 60))
    env_resolution: str = os.getenv("ENV_RESOLUTION", "cycle")  # cycle | load
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()
