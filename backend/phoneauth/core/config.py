from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    ENV: str = "prod"

    DATABASE_URL: str

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT_SECONDS: int = 30
    DB_POOL_RECYCLE_SECONDS: int = 1800

    JWT_SECRET: str
    JWT_ACCESS_TTL_SECONDS: int = 900

    # bcrypt work factor for refresh secrets
    REFRESH_HASH_ROUNDS: int = 10
    REFRESH_REUSE_DETECTION: bool = True

    # Network-as-Code number verification (RapidAPI gateway)
    NAC_BASE_URL: str = "https://network-as-code.p-eu.rapidapi.com"
    NAC_RAPIDAPI_HOST: str = "network-as-code.nokia.rapidapi.com"
    NAC_RAPIDAPI_KEY: str | None = None
    NAC_CLIENT_ID: str | None = None
    NAC_CLIENT_SECRET: str | None = None
    NAC_REDIRECT_URI: str = "http://localhost:8000/auth/onboard/callback"
    NAC_SCOPE: str = "dpv:FraudPreventionAndDetection number-verification:verify"
    NAC_CREDENTIALS_PATH: str = "/oauth2/v1/auth/clientcredentials"
    NAC_VERIFY_PATH: str = "/passthrough/camara/v1/number-verification/number-verification/v0/verify"
    NAC_HTTP_TIMEOUT_SECONDS: float = 20.0

    NAC_WEBHOOK_SECRET: str | None = None
    NAC_REQUIRE_WEBHOOK_SIGNATURE: bool = False
    NAC_WEBHOOK_MAX_AGE_SECONDS: int = 300

    VERIFICATION_PENDING_TTL_MINUTES: int = 30

    ALLOWED_HOSTS: str = "localhost,127.0.0.1"
    SECURITY_HEADERS_ENABLED: bool = True

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

settings = Settings()
