from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    AUTHORIZE_URL: str = "/oauth/authorize"
    PROCESS_LOGIN_URL: str = "/oauth/login"   # the login form POSTs here
    TOKEN_URL: str = "/oauth/token"
    GRANT_TTL_SECONDS: int = 60     # authorization codes are only good for a minute
    CODE_BYTES: int = Field(32, ge=16)  # 256-bit grant secrets
    ACCESS_TOKEN_SECRET: str = ""   # empty -> unsigned "user_id,client_id" tokens
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()
