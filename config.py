import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv


class ConfigError(ValueError):
    pass


@dataclass
class Config:
    ha_url: str = ""
    ha_token: str = ""
    sensor_entity: str = "sensor.rtfm"
    media_prefix: str = "/media/rtfm/"
    media_path: str = "/media/local/rtfm"
    host: str = "0.0.0.0"
    port: int = 3000
    request_timeout: float = 10.0
    poll_interval: float = 0.0
    advertise: bool = True


def _number(env: Mapping[str, str], key: str, default, cast):
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")


def _flag(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off", "")


def load_config(env: Optional[Mapping[str, str]] = None) -> Config:
    """Build a Config from the environment (and a .env file, if present)."""
    if env is None:
        load_dotenv()
        env = os.environ

    return Config(
        ha_url=env.get("HA_URL", "").rstrip("/"),
        ha_token=env.get("HA_TOKEN", ""),
        sensor_entity=env.get("HA_SENSOR", "sensor.rtfm"),
        media_prefix=env.get("HA_MEDIA_PREFIX", "/media/rtfm/"),
        media_path=env.get("HA_MEDIA_PATH", "/media/local/rtfm").rstrip("/"),
        host=env.get("HOST", "0.0.0.0"),
        port=_number(env, "PORT", 3000, int),
        request_timeout=_number(env, "HA_TIMEOUT", 10.0, float),
        poll_interval=_number(env, "VIDEO_LIST_POLL_SECONDS", 0.0, float),
        advertise=_flag(env, "MDNS_ADVERTISE", True),
    )
