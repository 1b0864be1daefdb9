"""CLI client configuration.

Environment variable prefix: OPENZT_CLI_
Example: OPENZT_CLI_API_URL=http://zoo-host:3000
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientConfig(BaseSettings):
    """Defaults for the `openzt` client; command-line flags override them."""

    model_config = SettingsConfigDict(env_prefix="OPENZT_CLI_")

    api_url: str = Field(default="http://localhost:3000", description="Manager base URL")
    output: Literal["table", "json"] = Field(default="table", description="Output format")
    timeout: float = Field(default=120.0, description="Request timeout (seconds)")
