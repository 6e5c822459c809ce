from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-1.5-flash-latest", validation_alias="GEMINI_MODEL")
	gemini_timeout_seconds: float = Field(default=120.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="LearnSphere", validation_alias="OPENROUTER_TITLE")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")
	# Optimistic-concurrency retries for ledger/course writes
	conflict_retries: int = Field(default=3, validation_alias="CONFLICT_RETRIES")

	# HTTP surface
	cors_origins: str = Field(default="*", validation_alias="CORS_ORIGINS")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Progression policy
	pass_threshold: int = Field(default=50, validation_alias="PASS_THRESHOLD")
	perfect_bonus: int = Field(default=10, validation_alias="PERFECT_BONUS")
	excellent_bonus: int = Field(default=5, validation_alias="EXCELLENT_BONUS")
	chapter_bonus: int = Field(default=50, validation_alias="CHAPTER_BONUS")
	streak_bonus_per_day: int = Field(default=5, validation_alias="STREAK_BONUS_PER_DAY")
	streak_bonus_cap: int = Field(default=50, validation_alias="STREAK_BONUS_CAP")
	default_quiz_xp: int = Field(default=15, validation_alias="DEFAULT_QUIZ_XP")
	leaderboard_limit: int = Field(default=10, validation_alias="LEADERBOARD_LIMIT")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def cors_origin_list(self) -> list[str]:
		return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

settings = Settings()
