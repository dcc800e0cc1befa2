from datetime import timedelta

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FieldMapping(BaseModel):
    """Which order field feeds which pass attribute. Unset keys use defaults."""

    event_name: str | None = None
    venue_name: str | None = None
    event_time: str | None = None
    ticket_number: str | None = None
    expiration_date: str | None = None

    model_config = {"extra": "forbid"}


class Settings(BaseSettings):
    # Base de datos
    db_url: str = Field("sqlite+aiosqlite:///./ticketpass.sqlite3", alias="DB_URL")

    # Vault: clave simétrica + credencial cifrada
    vault_dir: str = Field("keys", alias="VAULT_DIR")

    # Emisor
    issuer_id: str = Field("", alias="ISSUER_ID")
    issuer_name: str = Field("Ticket Office", alias="ISSUER_NAME")
    class_name: str | None = Field(None, alias="CLASS_NAME")

    # Emisión
    eligible_categories: list[str] = Field(default_factory=list, alias="ELIGIBLE_CATEGORIES")
    field_mapping: FieldMapping = Field(default_factory=FieldMapping, alias="FIELD_MAPPING")
    default_event_name: str = Field("Default Event Name", alias="DEFAULT_EVENT_NAME")
    default_venue_name: str = Field("Default Venue", alias="DEFAULT_VENUE_NAME")
    event_time_default: timedelta = Field(timedelta(0), alias="EVENT_TIME_DEFAULT")
    expiration_default: timedelta = Field(timedelta(weeks=1), alias="EXPIRATION_DEFAULT")
    ticket_number_prefix: str = Field("TKT-", alias="TICKET_NUMBER_PREFIX")

    # Backend de wallet
    wallet_api_base: str = Field(
        "https://walletobjects.googleapis.com/walletobjects/v1", alias="WALLET_API_BASE"
    )
    token_uri: str = Field("https://oauth2.googleapis.com/token", alias="TOKEN_URI")
    wallet_scope: str = Field(
        "https://www.googleapis.com/auth/wallet_object.issuer", alias="WALLET_SCOPE"
    )
    backend_timeout: float = Field(10.0, alias="BACKEND_TIMEOUT")

    # Save-link (JWT)
    jwt_alg: str = Field("RS256", alias="JWT_ALG")
    save_host: str = Field("pay.google.com", alias="SAVE_HOST")
    save_origins: list[str] = Field(default_factory=list, alias="SAVE_ORIGINS")

    # Roles
    redemption_roles: list[str] = Field(default_factory=lambda: ["ticket_validator"], alias="REDEMPTION_ROLES")
    admin_roles: list[str] = Field(default_factory=lambda: ["admin"], alias="ADMIN_ROLES")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,  # permite defaults si no hay variable de entorno
    )
