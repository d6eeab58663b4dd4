from pydantic import Field
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """Numbering configuration loaded from environment variables."""

    # Transactions need a replica set or a sharded cluster
    database_url: str = "mongodb://localhost:27017/seqnum?replicaSet=rs0"
    kind_name_prefix: str = "Numbering"  # Collections become <prefix>Ancestor and <prefix>Item
    max_retry_time: float = Field(default=5.0, gt=0)  # Seconds spent retrying before giving up
    retry_min_delay: float = Field(default=0.1, ge=0)
    retry_max_delay: float = Field(default=1.0, ge=0)
    debug: bool = False

    model_config = {
        "env_file": [".env"],
        "env_prefix": "SEQNUM_",
        "extra": "ignore",
    }
