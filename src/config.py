import os
from typing import Optional

from aws_lambda_powertools import Logger
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

import entities


def get_logger(service: Optional[str] = None, level: Optional[str] = None) -> Logger:
    kwargs = {
        "json_default": entities.json_default,
        "level": level or os.environ.get("LOG_LEVEL", "INFO"),
    }
    if service:
        kwargs["service"] = service
    return Logger(**kwargs)


logger = get_logger(service="config")

GRAPH_BATCH_LIMIT = 20
GRAPH_SCOPE = "https://graph.microsoft.com/.default"


class Config(BaseSettings):
    model_config = SettingsConfigDict(frozen=True)

    graph_tenant_id: str
    graph_client_id: str
    graph_client_secret: str
    graph_base_url: str = "https://graph.microsoft.com/beta"
    request_timeout_seconds: int = 30

    mapping_table_name: str
    mapping_partition_key: str = "DeviceGroupSync"

    dry_run: bool = False
    log_level: str = "INFO"

    post_update_to_slack: bool = False
    slack_bot_token: str = ""
    slack_channel_id: str = ""

    @field_validator("graph_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


_config: Optional[Config] = None


def get_config() -> Config:
    global _config  # noqa: PLW0603
    if _config is None:
        _config = Config()  # type: ignore # noqa: PGH003
        logger.debug(
            "Configuration loaded",
            extra={
                "mapping_table_name": _config.mapping_table_name,
                "mapping_partition_key": _config.mapping_partition_key,
                "graph_base_url": _config.graph_base_url,
                "dry_run": _config.dry_run,
            },
        )
    return _config
