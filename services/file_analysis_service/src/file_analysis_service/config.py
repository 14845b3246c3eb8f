from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    port: int = 8002
    log_level: str = "INFO"
    data_dir: str = "/data"
    database_url: str | None = None
    file_storing_base_url: str = "http://file-storing-service:8001"
    file_storing_timeout_seconds: float = 10.0

    # admission control and background workers
    max_concurrent_analyses: int = 10
    admission_timeout_seconds: float = 1.0
    analysis_workers: int = 4
    analysis_queue_size: int = 100

    metadata_retry_attempts: int = 3
    metadata_retry_base_delay_seconds: float = 1.0

    # compare against prior submissions' text instead of the placeholder token set
    compare_prior_content: bool = False

    word_cloud_api_url: str = "https://quickchart.io/wordcloud"
    word_cloud_width: int = 800
    word_cloud_height: int = 600
    word_cloud_max_words: int = 100
    word_cloud_timeout_seconds: float = 30.0
    word_cloud_fallback_url: str = "https://quickchart.io/chart?c={type:'wordCloud'}"

    @property
    def db_url(self) -> str:
        return self.database_url or f"sqlite:///{self.data_dir.rstrip('/')}/file_analysis_service.db"


settings = Settings()
