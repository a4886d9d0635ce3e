"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local/mock fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Auth ─────────────────────────────────────────────────────────
    use_auth0: bool = Field(default=True, alias="FF_USE_AUTH0")
    # ON  → JWT validated via Auth0 JWKS. Needs AUTH0_DOMAIN, AUTH0_AUDIENCE.
    # OFF → every request runs as "local-user" with the admin role. No token needed.

    # ── Realtime ─────────────────────────────────────────────────────
    use_redis: bool = Field(default=True, alias="FF_USE_REDIS")
    # ON  → Redis pub/sub for match/notification events. Needs REDIS_URL.
    # OFF → Events silently skipped. Clients poll the counts endpoint.

    # ── Embeddings ───────────────────────────────────────────────────
    use_embeddings: bool = Field(default=True, alias="FF_USE_EMBEDDINGS")
    # ON  → Memories embedded via EMBEDDING_BASE_URL. Needs an API key.
    # OFF → No vectors. Matching uses keyword rules only.

    # ── Detail extraction ────────────────────────────────────────────
    use_llm_extraction: bool = Field(default=True, alias="FF_USE_LLM_EXTRACTION")
    # ON  → Location / time / clothing pulled out of the narrative by the LLM.
    # OFF → Only what the user typed into the form is stored.

    # ── LLM Provider ─────────────────────────────────────────────────
    llm_provider: str = Field(default="openai", alias="FF_LLM_PROVIDER")
    # "openai" → Direct OpenAI (default). Needs OPENAI_API_KEY.
    # "gemini" → Google Gemini. Needs GEMINI_API_KEY.
    # "aiml"   → AIML API proxy. Needs AIML_API_KEY.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
