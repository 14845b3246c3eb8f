from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    port: int = 8000
    log_level: str = "INFO"
    file_storing_base_url: str = "http://file-storing-service:8001"
    file_analysis_base_url: str = "http://file-analysis-service:8002"
    file_storing_timeout_seconds: float = 20.0
    file_analysis_timeout_seconds: float = 10.0


settings = Settings()
