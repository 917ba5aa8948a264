"""
Configuration management using pydantic-settings.
"""
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings
from typing import List, Dict
import os
import yaml
import structlog
from pathlib import Path

logger = structlog.get_logger()


class PipelineConfig(BaseModel):
    """Batching, merging and metering configuration."""
    batch_size: int = Field(default=50, ge=1, description="Records per oracle batch")
    merge_fan_in: int = Field(default=5, ge=2, description="Max partial results combined per merge call")
    cost_per_record: int = Field(default=1, ge=0, description="Credits charged per record")
    payload_char_budget: int = Field(default=15000, ge=1, description="Max characters of batch text sent to the oracle")
    fallback_summary_chars: int = Field(default=1000, ge=0, description="Raw text salvaged as summary when repair fails")
    summary_max_chars: int = Field(default=4000, ge=1, description="Upper bound on summary length")
    parallel_pool: int = Field(default=1, ge=1, description="Worker threads for batch/merge calls (1 = sequential)")

    def __init__(self, **kwargs):
        # CREDITS_PER_EMAIL wins over the default but not over explicit values
        env_cost = os.getenv("CREDITS_PER_EMAIL")
        if "cost_per_record" not in kwargs and env_cost:
            kwargs["cost_per_record"] = int(env_cost)
        super().__init__(**kwargs)


class LLMConfig(BaseModel):
    """Oracle (chat-completions endpoint) configuration."""
    endpoint: str = Field(default="https://api.openai.com/v1/chat/completions", description="Chat completions URL")
    model: str = Field(default="gpt-4o-mini", description="Model identifier")
    timeout_s: int = Field(default=60, description="Per-call timeout in seconds")
    headers: Dict[str, str] = Field(default_factory=dict, description="Additional headers")
    temperature: float = Field(default=0.2, description="Sampling temperature")
    classify_max_tokens: int = Field(default=800, description="Output token budget for batch classification")
    merge_max_tokens: int = Field(default=1000, description="Output token budget for merge rounds")
    max_retries: int = Field(default=2, ge=1, description="Attempts per call on transient errors")
    token_env: str = Field(default="LLM_TOKEN", description="Environment variable holding the API token")

    def __init__(self, **kwargs):
        env_values = {
            'endpoint': os.getenv('LLM_ENDPOINT', ''),
            'model': os.getenv('LLM_MODEL', ''),
        }

        for key, env_value in env_values.items():
            if key not in kwargs and env_value:
                kwargs[key] = env_value

        super().__init__(**kwargs)

    def get_token(self) -> str:
        """Get oracle API token from environment."""
        token = os.getenv(self.token_env) or os.getenv("OPENAI_API_KEY")
        if not token:
            raise ValueError(f"Environment variable {self.token_env} not set")
        return token


class StorageConfig(BaseModel):
    """Relational store configuration."""
    database_url: str = Field(default="sqlite:///resumail.db", description="SQLAlchemy database URL")
    atomic_decrement: bool = Field(default=True, description="Use conditional UPDATE for credit reservation")
    signup_credits: int = Field(default=10, ge=0, description="Credits granted to a newly provisioned account")
    echo_sql: bool = Field(default=False, description="Log emitted SQL")

    def __init__(self, **kwargs):
        env_url = os.getenv("DATABASE_URL")
        if "database_url" not in kwargs and env_url:
            kwargs["database_url"] = env_url
        super().__init__(**kwargs)


class ObservabilityConfig(BaseModel):
    """Observability configuration."""
    prometheus_port: int = Field(default=9108, description="Prometheus metrics port")
    log_level: str = Field(default="INFO", description="Log level")


class Config(BaseSettings):
    """Main configuration class."""

    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        # YAML files are applied lowest precedence first
        for yaml_config in self._load_yaml_configs():
            self._apply_yaml_config(yaml_config)

    def _load_yaml_configs(self) -> List[Dict]:
        """Load YAML configuration files in order of precedence."""
        paths = [Path("configs/config.example.yaml"), Path("configs/config.yaml")]
        custom_path = os.getenv("RESUMAIL_CONFIG_PATH")
        if custom_path:
            paths.append(Path(custom_path))

        configs = []
        for path in paths:
            if not path.exists():
                continue
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    config = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load config file", path=str(path), error=str(e))
                continue
            if config:
                configs.append(config)

        return configs

    def _apply_yaml_config(self, yaml_config: Dict) -> None:
        """Apply YAML configuration to current config."""
        if 'pipeline' in yaml_config:
            overrides = dict(yaml_config['pipeline'])
            if os.getenv('CREDITS_PER_EMAIL'):
                overrides.pop('cost_per_record', None)
            self.pipeline = PipelineConfig(**{**self.pipeline.model_dump(), **overrides})
        if 'llm' in yaml_config:
            for key, value in yaml_config['llm'].items():
                if not hasattr(self.llm, key):
                    continue
                # Environment variables beat YAML for endpoint and model
                if key == 'endpoint' and os.getenv('LLM_ENDPOINT'):
                    continue
                if key == 'model' and os.getenv('LLM_MODEL'):
                    continue
                setattr(self.llm, key, value)
        if 'storage' in yaml_config:
            for key, value in yaml_config['storage'].items():
                if not hasattr(self.storage, key):
                    continue
                if key == 'database_url' and os.getenv('DATABASE_URL'):
                    continue
                setattr(self.storage, key, value)
        if 'observability' in yaml_config:
            self.observability = ObservabilityConfig(**yaml_config['observability'])

    def get_llm_token(self) -> str:
        """Get oracle token from environment."""
        return self.llm.get_token()
