from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'School Hub'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Kolkata'
    database_url: str = 'sqlite:///./schoolhub.db'
    log_level: str = 'INFO'
    auth_secret: str = 'change-me'
    auth_session_expiry_hours: int = 12
    bootstrap_admin_email: str = ''
    bootstrap_admin_password: str = ''
    bootstrap_admin_name: str = 'Administrator'
    public_news_page_size: int = 20
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200


settings = Settings()
