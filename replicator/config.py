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

import logging
import os
from typing import List, Mapping, Optional

import dotenv
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)

ENV_PREFIX = "REPLICATOR_"

dotenv.load_dotenv(".env")


class Settings(BaseModel):
    """Controller settings, read from REPLICATOR_* environment variables"""

    database_url: str = "sqlite+aiosqlite:///./replicator.db"
    redis_url: str = "redis://localhost:6379"
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"
    lock_type: str = "redis"
    enabled_kinds: List[str] = Field(default_factory=lambda: ["Secret"])
    # Requeue delay after a reconcile that wrote nothing; None disables it
    noop_requeue_after: Optional[float] = None
    reconcile_timeout: float = 30.0
    retry_backoff_factor: int = 1
    retry_backoff_max: int = 300
    max_retries: int = 10
    resync_interval: float = 300.0
    annotation_prefix: str = "replicated-resource"

    @field_validator("enabled_kinds", mode="before")
    @classmethod
    def _split_kinds(cls, value):
        if isinstance(value, str):
            return [kind.strip() for kind in value.split(",") if kind.strip()]
        return value

    @field_validator("noop_requeue_after", mode="before")
    @classmethod
    def _empty_is_disabled(cls, value):
        if value in ("", "0", 0):
            return None
        return value

    @field_validator("lock_type")
    @classmethod
    def _check_lock_type(cls, value: str) -> str:
        if value not in ("redis", "threading"):
            raise ValueError(f"Unsupported lock type: {value}")
        return value

    @field_validator("reconcile_timeout", "resync_interval")
    @classmethod
    def _check_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            key = ENV_PREFIX + name.upper()
            if key in environ:
                values[name] = environ[key]
        return cls(**values)


settings = Settings.from_env()


def create_engine(database_url: Optional[str] = None, **kwargs) -> AsyncEngine:
    return create_async_engine(database_url or settings.database_url, **kwargs)


engine = create_engine()
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)
