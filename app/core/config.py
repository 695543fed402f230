"""
Configurações da aplicação.
Carrega variáveis de ambiente.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Configurações carregadas do .env"""

    # App
    APP_NAME: str = "Compliance Gate"
    ENVIRONMENT: str = "development"

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""

    # Redis (cache do catálogo de regras)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Slack (alertas críticos de lockdown / emergency stop)
    SLACK_WEBHOOK_URL: str = ""

    # API (usada pelo scheduler para disparar jobs)
    API_BASE_URL: str = "http://localhost:8000"

    # Origens liberadas no CORS (JSON), ex: '["https://painel.exemplo.com"]'
    CORS_ORIGINS: list[str] = ["*"]

    # Kill switch de processo - não depende do banco
    # IMPORTANTE: True bloqueia TODO outbound, independente de qualquer regra
    EMERGENCY_STOP_FORCED: bool = False

    # Frequency caps padrão (janela deslizante)
    FREQ_CAP_SMS_24H: int = 3
    FREQ_CAP_EMAIL_24H: int = 1
    FREQ_CAP_VOICE_24H: int = 2
    FREQ_CAP_TOTAL_24H: int = 5
    FREQ_CAP_WINDOW_HOURS: int = 24

    # Horário legal de ligação (hora local do contato)
    CALL_HOUR_START: int = 8   # 08:00
    CALL_HOUR_END: int = 21    # 21:00 (exclusivo)

    # Fuso padrão quando o DDD não está mapeado
    DEFAULT_TIMEZONE: str = "America/New_York"

    # Override do mapa DDD -> fuso (JSON), ex: '{"907": "America/Anchorage"}'
    AREA_CODE_TIMEZONES: dict[str, str] = {}

    # Timeouts e cache
    SAFETY_READ_TIMEOUT_SECONDS: float = 5.0
    POLICY_CACHE_TTL_SECONDS: int = 60

    @property
    def frequency_caps(self) -> dict[str, int]:
        """Caps por canal em formato de dicionário."""
        return {
            "sms": self.FREQ_CAP_SMS_24H,
            "email": self.FREQ_CAP_EMAIL_24H,
            "voice": self.FREQ_CAP_VOICE_24H,
        }

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignora variáveis extras do .env


class ComplianceConfig:
    """
    Constantes do gate de compliance.

    Valores que não variam por ambiente ficam aqui, não no .env.
    """

    # Contagem retornada quando a leitura de touches falha.
    # Grande o suficiente para estourar qualquer cap (fail-safe).
    TOUCH_COUNT_FAIL_SAFE: int = 999

    # Cap usado para canais sem configuração explícita
    DEFAULT_CHANNEL_CAP: int = 3

    # Janela do bucket de idempotência
    IDEMPOTENCY_BUCKET_SECONDS: int = 60

    # Horário comercial padrão (quando system_config não responde)
    BUSINESS_HOURS_START: str = "09:00"
    BUSINESS_HOURS_END: str = "18:00"
    BUSINESS_DAYS: tuple = ("monday", "tuesday", "wednesday", "thursday", "friday")

    # Circuit breaker do Supabase
    SUPABASE_FALHAS_PARA_ABRIR: int = 5
    SUPABASE_TEMPO_RESET_SEGUNDOS: float = 30.0

    # Audit trail
    AUDIT_MAX_ERROR_CHARS: int = 500
    AUDIT_QUERY_LIMIT: int = 100

    # Peso de risco por tipo de verificação (agent actions)
    RISK_LOCKDOWN: int = 100
    RISK_ALERT_ONLY: int = 25
    RISK_SCRAPE_RATE: int = 30
    RISK_NON_API_SOURCE: int = 15
    RISK_CALL_TIME: int = 40
    RISK_OUTREACH_RATE: int = 25
    RISK_MARKETING_CONSENT: int = 10
    RISK_EU_PHONE: int = 20
    RISK_AD_SPEND: int = 35


@lru_cache()
def get_settings() -> Settings:
    """Retorna instância cacheada das configurações."""
    return Settings()


settings = get_settings()
