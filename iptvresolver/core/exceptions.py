from typing import Optional


# ===========================
# Base Resolver Error
# ===========================
class ResolverError(Exception):
    pass


# ===========================
# Query Errors
# ===========================
class InvalidQuery(ResolverError, ValueError):
    def __init__(self, reason: str = "title or external id required"):
        self.reason = reason
        super().__init__(f"Invalid resolution query: {reason}")


# ===========================
# Provider Errors
# ===========================
class ProviderError(ResolverError):
    def __init__(self, action: str, status_code: Optional[int] = None, reason: str = ""):
        self.action = action
        self.status_code = status_code
        self.reason = reason
        message = f"Provider request failed: {action}"
        if status_code is not None:
            message += f" (HTTP {status_code})"
        if reason:
            message += f" - {reason}"
        super().__init__(message)


class CatalogUnavailable(ResolverError):
    def __init__(self, provider_key: str, kind: str = "series"):
        self.provider_key = provider_key
        self.kind = kind
        super().__init__(f"No {kind} catalog available")


class EpisodeListUnavailable(ResolverError):
    def __init__(self, series_id: int, reason: str = ""):
        self.series_id = series_id
        self.reason = reason
        message = f"Episode list unavailable for series {series_id}"
        if reason:
            message += f" - {reason}"
        super().__init__(message)


# ===========================
# Payload Errors
# ===========================
class MalformedEpisodeRecord(ResolverError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Malformed episode record: {reason}")
