from pathlib import Path
from decimal import Decimal
from pydantic_settings import BaseSettings
from pydantic import Field, model_validator, field_validator
import secrets

from .domain.enums import PoliticaSobreventa

BASE_DIR = Path(__file__).resolve().parent.parent  # backend/

class Settings(BaseSettings):
    # ===== ENTORNO =====
    environment: str = Field(default="development")
    debug: bool = Field(default=False)

    # ===== DATABASE =====
    database_url: str = Field(default="sqlite:///./data/todafru.db")

    # ===== SECURITY =====
    # El token lo emite el colaborador de autenticación; aquí solo se verifica
    secret_key: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    access_token_expire_minutes: int = Field(default=120)

    # ===== CORS =====
    allowed_origins: str = Field(default="http://localhost:5173,http://localhost:3000")

    # ===== LOGS =====
    log_dir: str = Field(default="logs")

    # ===== INVENTARIO =====
    politica_sobreventa: PoliticaSobreventa = Field(default=PoliticaSobreventa.LIMITAR_A_CERO)
    movimiento_max_reintentos: int = Field(default=5)
    movimiento_backoff_segundos: float = Field(default=0.05)
    reversion_max_horas: int = Field(default=48)  # 0 = sin límite
    tasa_igv: Decimal = Field(default=Decimal("0.18"))

    class Config:
        env_file = ".env"
        case_sensitive = False

    @field_validator("movimiento_max_reintentos", mode="after")
    @classmethod
    def al_menos_un_intento(cls, v: int) -> int:
        return v if v >= 1 else 1

    @model_validator(mode="after")
    def validate_secret_key(self):
        if self.environment == "production" and len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY debe tener al menos 32 caracteres en producción.")
        return self

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


settings = Settings()
