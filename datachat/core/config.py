from pydantic_settings import BaseSettings, SettingsConfigDict

DEVELOPMENT_ENVIRONMENTS = ("development", "dev", "local")


class Settings(BaseSettings):
    # Application metadata store (connections, schemas, chats)
    DATABASE_URL: str
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "production"

    # LLM chat API (SQL generation, agent, visualization)
    LLAMA_URL: str
    LLM_TEMPERATURE: float = 0.0

    # Fernet key used for stored connection passwords
    CREDENTIAL_ENCRYPTION_KEY: str

    # NLQ tool / agent bounds
    NLQ_MAX_RETRIES: int = 2
    AGENT_MAX_ITERATIONS: int = 3

    # Outbound database pools
    POSTGRES_POOL_MAX_SIZE: int = 20
    MYSQL_POOL_MAX_SIZE: int = 10
    SQLSERVER_POOL_MAX_SIZE: int = 10
    DB_POOL_IDLE_TIMEOUT_SECONDS: float = 30.0
    DB_CONNECT_TIMEOUT_SECONDS: float = 5.0
    SQLSERVER_ODBC_DRIVER: str = "ODBC Driver 18 for SQL Server"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


def get_settings() -> Settings:
    return Settings()


def is_development(settings) -> bool:
    """True when outbound pools should skip transport encryption."""
    env = (getattr(settings, "ENVIRONMENT", "") or "").strip().lower()
    return env in DEVELOPMENT_ENVIRONMENTS
