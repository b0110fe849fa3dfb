import logging
from typing import List, Optional
from urllib.parse import quote

import requests

from config import Config

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Home Assistant could not be reached or returned something unusable."""


def _auth_headers(config: Config) -> dict:
    return {"Authorization": f"Bearer {config.ha_token}"}


def strip_prefix(entry: str, prefix: str) -> str:
    if prefix and entry.startswith(prefix):
        return entry[len(prefix):]
    return entry


def fetch_video_list(config: Config) -> List[str]:
    """Reads the media sensor and returns the playable filenames in order."""
    url = f"{config.ha_url}/api/states/{config.sensor_entity}"
    try:
        response = requests.get(url, headers=_auth_headers(config), timeout=config.request_timeout)
        response.raise_for_status()
        file_list = response.json()["attributes"]["file_list"]
    except requests.exceptions.RequestException as e:
        raise UpstreamError(f"Network error fetching video list: {e}") from e
    except (ValueError, KeyError, TypeError) as e:
        raise UpstreamError(f"Unexpected sensor payload: {e}") from e

    if not isinstance(file_list, list):
        raise UpstreamError("Sensor attribute file_list is not a list")
    return [strip_prefix(str(entry), config.media_prefix) for entry in file_list]


def open_media_stream(config: Config, filename: str, range_header: Optional[str] = None) -> requests.Response:
    """Opens a streaming GET for one media file. The caller must close it."""
    url = f"{config.ha_url}{config.media_path}/{quote(filename)}"
    headers = _auth_headers(config)
    if range_header:
        headers["Range"] = range_header
    try:
        response = requests.get(url, headers=headers, stream=True, timeout=config.request_timeout)
    except requests.exceptions.RequestException as e:
        raise UpstreamError(f"Error fetching media file {filename}: {e}") from e

    if response.status_code >= 400:
        response.close()
        raise UpstreamError(f"Error fetching media file {filename}: HTTP {response.status_code}")
    return response
