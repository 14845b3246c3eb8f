from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    port: int = 8001
    log_level: str = "INFO"
    data_dir: str = "/data"
    files_dir: str = "/data/files"
    database_url: str | None = None

    @property
    def db_url(self) -> str:
        # sqlite файл рядом с хранилищем, если не задан явно
        return self.database_url or f"sqlite:///{self.data_dir.rstrip('/')}/file_storing_service.db"


settings = Settings()
