from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    secret_key: str = "dev-secret"
    database_url: str = "sqlite:///./gymbook.db"
    cookie_secure: bool = False
    session_max_age: int = 8 * 60 * 60

    # One of the two must be set for the admin dashboard to open.
    admin_password: str = ""
    admin_password_hash: str = ""

    booking_window_days: int = 14
    default_capacity: int = 3
    expiring_threshold_days: int = 7
    seed_default_slots: bool = True

    site_url: str = "http://localhost:8000"
    notifications_enabled: bool = True
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    email_from: str = "FIT2FLY <bookings@localhost>"

    log_level: str = "INFO"
    log_file: str = "logs/errors.log"


settings = Settings()
