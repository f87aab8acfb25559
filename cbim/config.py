# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Index manager settings, read from CBIM_* environment variables or a .env file"""

    model_config = SettingsConfigDict(env_prefix="CBIM_", env_file=".env", extra="ignore")

    cluster: str = Field("couchbase://localhost", description="Cluster connection string")
    username: str = Field("Administrator", description="Cluster administrator username")
    password: str = Field("", description="Cluster administrator password")

    build_timeout: float = Field(300, description="Seconds to wait for indexes to complete building")
    build_delay: float = Field(3.0, description="Seconds to wait for index nodes to synchronize before building")
    request_timeout: float = Field(75, description="Seconds before an HTTP request to the cluster times out")

    query_port: int = 8093
    query_port_secure: int = 18093
    management_port: int = 8091
    management_port_secure: int = 18091
    verify_tls: bool = True

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()


settings = Settings()
