from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def normalize_database_url(url: str) -> str:
    """Force the asyncpg driver and translate libpq ``sslmode`` into asyncpg's ``ssl``."""
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = parts.scheme
    if scheme in {"postgres", "postgresql", "postgresql+psycopg", "postgresql+psycopg2"}:
        scheme = "postgresql+asyncpg"

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    sslmode = query.pop("sslmode", None)
    if sslmode is not None and "ssl" not in query:
        normalized = sslmode.lower().strip()
        query["ssl"] = "disable" if normalized in {"disable", "allow"} else normalized
    ssl_val = query.get("ssl")
    if ssl_val is not None and ssl_val.lower() in {"1", "true", "yes", "on"}:
        query["ssl"] = "require"
    elif ssl_val is not None and ssl_val.lower() in {"0", "false", "no", "off"}:
        query["ssl"] = "disable"

    new_query = urlencode(query, doseq=True)
    return urlunsplit((scheme, parts.netloc, parts.path, new_query, parts.fragment))
