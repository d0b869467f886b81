"""Latest-release check against GitHub."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from packaging.version import InvalidVersion, Version

from forgor.runtime_logging import get_runtime_logger
from forgor.version import __version__

REPOSITORY = "Siutan/forgor"
RELEASES_URL = f"https://api.github.com/repos/{REPOSITORY}/releases/latest"
CHECK_TIMEOUT_SECONDS = 5.0
UPGRADE_HINT = "pip install --upgrade forgor"


class UpdateError(Exception):
    pass


@dataclass(slots=True)
class ReleaseInfo:
    current: str
    latest: str
    url: str = ""

    @property
    def update_available(self) -> bool:
        try:
            return Version(self.latest) > Version(self.current)
        except InvalidVersion:
            return False


def latest_release(client: httpx.Client | None = None, current: str = __version__) -> ReleaseInfo:
    logger = get_runtime_logger()
    owns_client = client is None
    client = client or httpx.Client(timeout=CHECK_TIMEOUT_SECONDS)
    try:
        response = client.get(RELEASES_URL, headers={"Accept": "application/vnd.github+json"})
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPError as exc:
        logger.warning("update.check_failed", error=str(exc))
        raise UpdateError(f"failed to check for updates: {exc}") from exc
    except ValueError as exc:
        raise UpdateError("release feed returned malformed JSON") from exc
    finally:
        if owns_client:
            client.close()

    tag = str(body.get("tag_name") or "").strip()
    if not tag:
        raise UpdateError("release feed did not include a tag")
    info = ReleaseInfo(current=current, latest=tag.lstrip("v"), url=str(body.get("html_url") or ""))
    logger.info("update.checked", current=current, latest=info.latest)
    return info
