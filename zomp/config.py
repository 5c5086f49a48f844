from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Required: the process refuses to start without them.
    DATABASE_URL: str
    SECRET_KEY: str

    APP_ENV: str = "development"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Sessions
    REDIS_URL: str = "redis://localhost:6379/0"
    SESSION_BACKEND: str = "redis"
    SESSION_COOKIE_NAME: str = "zomp_session"
    SESSION_TTL_SECONDS: int = 14 * 24 * 60 * 60

    # Authorization policy
    REQUIRE_VERIFIED: bool = True

    # Credentials
    JWT_ALGORITHM: str = "HS256"
    TOKEN_EXPIRE_MINUTES: int = 60
    BCRYPT_ROUNDS: int = 10

    # Outbound email
    CLIENT_ORIGIN: str = "http://localhost:3000"
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAIL_FROM: str = "no-reply@zomp.works"

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
