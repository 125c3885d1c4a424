"""Configuration management with YAML and environment variables."""
import os
from pathlib import Path
from typing import Optional, List
import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class TMDBConfig(BaseModel):
    api_key: Optional[str] = None
    base_url: str = "https://api.themoviedb.org/3"
    language: Optional[str] = None
    include_adult: bool = False


class HTTPConfig(BaseModel):
    timeout: float = 10.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: int = 60


class CacheConfig(BaseModel):
    ttl_seconds: int = 300


class ArrConfig(BaseModel):
    url: str
    api_key: str


class ServerConfig(BaseModel):
    """A Plex server and its paired download managers."""
    id: str
    name: str
    url: str
    token: str
    radarr: Optional[ArrConfig] = None
    sonarr: Optional[ArrConfig] = None


class UserConfig(BaseModel):
    username: str
    role: str = "user"  # admin|user
    email: Optional[str] = None
    can_add_directly: bool = False
    servers: List[str] = Field(default_factory=list)
    primary_server: Optional[str] = None


class SchedulerConfig(BaseModel):
    enabled: bool = True
    cadence: str = "1 hour"
    timezone: str = "UTC"


class AppConfig(BaseModel):
    data_dir: str = "/data"
    database_url: Optional[str] = None  # overrides the SQLite file under data_dir
    log_level: str = "INFO"
    user_header: str = "Remote-User"


class Config(BaseSettings):
    tmdb: TMDBConfig = Field(default_factory=TMDBConfig)
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    app: AppConfig = Field(default_factory=AppConfig)
    servers: List[ServerConfig] = Field(default_factory=list)
    users: List[UserConfig] = Field(default_factory=list)

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"

    @classmethod
    def load_from_yaml(cls, yaml_path: str) -> "Config":
        """Load configuration from YAML file, override with env vars."""
        config_path = Path(yaml_path)
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {yaml_path}\n"
                f"Please create config/config.yaml from config.example.yaml\n"
                f"Make sure the volume is mounted: -v ./config:/config:ro"
            )

        with open(config_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}

        # Override with environment variables (TMDB__API_KEY, APP__LOG_LEVEL, ...)
        for key in ["tmdb", "http", "cache", "scheduler", "app"]:
            section = yaml_data.get(key) or {}
            for subkey in set(section) | set(cls.model_fields[key].annotation.model_fields):
                env_value = os.getenv(f"{key.upper()}__{subkey.upper()}")
                if env_value:
                    section[subkey] = env_value
            if section:
                yaml_data[key] = section

        return cls(**yaml_data)
