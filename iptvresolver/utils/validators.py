from typing import Optional
from urllib.parse import parse_qs, urlparse

from iptvresolver.services.xtream import XtreamCredentials
from iptvresolver.utils.logger import api_logger

# ===========================
# Xtream URL Patterns
# ===========================
XTREAM_ENDPOINTS = ("/get.php", "/xmltv.php", "/player_api.php")
USERNAME_PARAMS = ("username", "user", "uname")
PASSWORD_PARAMS = ("password", "pass", "pwd")


def _first_param(params, names) -> Optional[str]:
    for name in names:
        values = params.get(name)
        if values and values[0].strip():
            return values[0].strip()
    return None


# ===========================
# Base URL Extraction
# ===========================
def xtream_base_url(url: str) -> Optional[str]:
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None

    path = parsed.path.rstrip("/")
    for endpoint in XTREAM_ENDPOINTS:
        if path.lower().endswith(endpoint):
            path = path[:-len(endpoint)]
            break

    return f"{parsed.scheme}://{parsed.netloc}{path.rstrip('/')}"


# ===========================
# Credential Parsing
# ===========================
def parse_xtream_credentials(url: Optional[str]) -> Optional[XtreamCredentials]:
    if not url or not url.strip():
        api_logger.debug("Empty provider URL")
        return None

    parsed = urlparse(url.strip())
    if not parsed.path.lower().rstrip("/").endswith(XTREAM_ENDPOINTS):
        api_logger.debug("Provider URL is not an Xtream endpoint")
        return None

    params = parse_qs(parsed.query)
    username = _first_param(params, USERNAME_PARAMS)
    password = _first_param(params, PASSWORD_PARAMS)
    if not username or not password:
        api_logger.debug("Provider URL has no credentials")
        return None

    base_url = xtream_base_url(url)
    if not base_url:
        return None

    return XtreamCredentials(base_url=base_url, username=username, password=password)


def credentials_from_settings(settings) -> Optional[XtreamCredentials]:
    if settings.XTREAM_USERNAME and settings.XTREAM_PASSWORD and settings.XTREAM_URL:
        base_url = xtream_base_url(settings.XTREAM_URL)
        if base_url:
            return XtreamCredentials(
                base_url=base_url,
                username=settings.XTREAM_USERNAME.strip(),
                password=settings.XTREAM_PASSWORD.strip()
            )

    return parse_xtream_credentials(settings.XTREAM_URL)
