from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Draft storage
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")
	draft_retention_days: int = Field(default=7, validation_alias="DRAFT_RETENTION_DAYS")

	# Platform REST API (KSB catalog + template persistence)
	platform_api_base_url: str = Field(default="http://localhost:5000", validation_alias="PLATFORM_API_BASE_URL")
	platform_api_token: str | None = Field(default=None, validation_alias="PLATFORM_API_TOKEN")
	platform_api_timeout_seconds: float = Field(default=15.0, validation_alias="PLATFORM_API_TIMEOUT_SECONDS")

	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Apprenticeship Course Builder", validation_alias="OPENROUTER_TITLE")

	# Tokens are minted by the identity provider; we only verify them
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Builder behaviour
	autosave_interval_seconds: float = Field(default=60.0, validation_alias="AUTOSAVE_INTERVAL_SECONDS")
	autosave_enabled_default: bool = Field(default=True, validation_alias="AUTOSAVE_ENABLED_DEFAULT")
	synth_module_ksb_cap: int = Field(default=5, validation_alias="SYNTH_MODULE_KSB_CAP")
	synth_lesson_ksb_cap: int = Field(default=3, validation_alias="SYNTH_LESSON_KSB_CAP")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
