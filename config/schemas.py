from __future__ import annotations

from collections.abc import Mapping

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    ValidationError,
    field_validator,
)

from common.exceptions import ConfigError

# mypy: disable-error-code=call-arg


class RouteModel(BaseModel):
    """1 本の転送ルール。未知のキーは設定ミスとして拒否する。"""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    from_node: str = Field(alias="from", min_length=1)
    to_node: str = Field(alias="to", min_length=1)
    resource_type: str = Field(
        validation_alias=AliasChoices("resourceType", "type", "resource_type"),
        min_length=1,
    )
    limit: StrictInt
    threshold: StrictInt


class ApiModel(BaseModel):
    base_url: str = "https://pintandpillage.nl/api"
    request_timeout: float = Field(10.0, gt=0)
    verify_ssl: bool = True
    max_workers: int = Field(8, ge=1)
    facility_name: str = Field("Market", min_length=1)


class LoggingModel(BaseModel):
    level: str = "INFO"
    rotation: str = "daily"
    filename: str = "balancer.log"
    logs_dir: str = "logs"

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        return v.upper()


class SchedulerModel(BaseModel):
    timezone: str = "Europe/Amsterdam"
    cron: str = "*/15 * * * *"


class LockModel(BaseModel):
    name: str = "balance_resources"
    dir: str = "locks"


class AppConfigModel(BaseModel):
    username: str | None = None
    password: str | None = None
    api: ApiModel = ApiModel()
    logging: LoggingModel = LoggingModel()
    scheduler: SchedulerModel = SchedulerModel()
    lock: LockModel = LockModel()
    routes: list[RouteModel] = Field(
        validation_alias=AliasChoices("routes", "resources"), min_length=1
    )


def validate_config_dict(d: Mapping[str, object]) -> AppConfigModel:
    """YAML辞書をPydanticで検証し、正規化したモデルを返す。

    検証エラーは ConfigError に変換して送出する。
    """
    try:
        return AppConfigModel.model_validate(d)
    except ValidationError as e:
        raise ConfigError(f"設定が不正です: {e}") from e
