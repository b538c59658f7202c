import os
from pydantic import BaseModel, ConfigDict, Field, field_validator, ValidationError

from streamscan.domain.errors import ConfigError

DEFAULT_RPC_URL = "https://dream-rpc.somnia.network"
DEFAULT_REGISTRY = "0xC1d833a80469854a7450Dd187224b2ceE5ecE264"

class RPCSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str = DEFAULT_RPC_URL
    timeout: int = Field(20, ge=1)
    max_connections: int = Field(16, ge=1)
    max_retries: int = Field(3, ge=0)
    backoff_s: float = Field(1.0, ge=0)

    @field_validator("url")
    @classmethod
    def must_be_http(cls, v: str) -> str:
        if not v.startswith(("https://", "http://")):
            raise ValueError("RPC URL must be http(s)")
        return v

class ScanSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    # provider-specific; tune per endpoint
    chunk_width: int = Field(800, ge=1)
    lookback_blocks: int = Field(30_000, ge=0)
    batch_size: int = Field(20, ge=1)
    poll_interval_ms: int = Field(10_000, ge=100)
    feed_size: int = Field(50, ge=1)

class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    rpc: RPCSettings = RPCSettings()
    scan: ScanSettings = ScanSettings()
    registry_address: str = DEFAULT_REGISTRY
    log_level: str = "INFO"

    @field_validator("registry_address")
    @classmethod
    def must_be_address(cls, v: str) -> str:
        if not (v.startswith("0x") and len(v) == 42):
            raise ValueError("registry_address must be a 0x-prefixed 20-byte hex address")
        return v

def load_settings(path: str = "config.yaml") -> Settings:
    import yaml
    cfg: dict = {}
    if os.path.exists(path):
        with open(path, "r") as f:
            cfg = yaml.safe_load(f) or {}

    # env wins over the file
    env_rpc = os.environ.get("STREAMSCAN_RPC_URL")
    if env_rpc:
        cfg.setdefault("rpc", {})["url"] = env_rpc
    env_registry = os.environ.get("STREAMSCAN_REGISTRY")
    if env_registry:
        cfg["registry_address"] = env_registry

    try:
        return Settings.model_validate(cfg)
    except ValidationError as e:
        raise ConfigError(f"Configuration error in {path}: {e}") from e
