from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "postgresql://engage:engage@db:5432/engage"
    APP_ENV: str = "development"

    # Comma-separated allowed origins, or "*" to allow all.
    # Example: "https://painel.clinica.com,https://api.clinica.com"
    CORS_ORIGINS: str = "*"

    LOG_LEVEL: str = "INFO"
    # "text" or "json". Production always logs JSON.
    LOG_FORMAT: str = "text"

    # Bearer token required on /jobs/* when set.
    CRON_SECRET: str = ""

    # --- Outbound channel (Twilio WhatsApp) ---
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_WHATSAPP_NUMBER: str = ""  # e.g. "whatsapp:+14155238886"

    # --- Classifier / reply model (OpenAI-compatible chat completions) ---
    LLM_API_BASE: str = "https://api.openai.com/v1"
    LLM_API_KEY: str = ""
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = 20.0

    # --- Scheduler ---
    DISPATCH_BATCH_SIZE: int = 50
    # Pending messages older than this are marked error. 0 disables the guard.
    MAX_PENDING_AGE_HOURS: int = 72
    # Seed/test destinations that must never reach the real channel.
    TEST_NUMBER_PATTERN: str = r"^(whatsapp:)?\+55119999\d{4}$"
    JOB_LOCK_TTL_MINUTES: int = 15

    # Python weekday: 0 = Monday ... 6 = Sunday
    DEFAULT_WEIGH_DAY: int = 6

    # --- Onboarding ---
    # Patient portal, linked from the welcome messages
    PORTAL_URL: str = "https://clinicadornelles.com.br/portal"

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
