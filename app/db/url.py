from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def normalize_database_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        return url

    if url.startswith("sqlite"):
        # urlunsplit would drop the empty authority of sqlite:///path
        if url.startswith("sqlite:"):
            return "sqlite+aiosqlite:" + url[len("sqlite:"):]
        return url

    parts = urlsplit(url)
    scheme = parts.scheme

    if scheme in {"postgres", "postgresql", "postgresql+psycopg"}:
        scheme = "postgresql+asyncpg"

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    if scheme == "postgresql+asyncpg":
        # asyncpg takes `ssl`, not libpq's `sslmode`.
        sslmode = query.pop("sslmode", None)
        if sslmode is not None and "ssl" not in query:
            normalized = sslmode.lower().strip()
            if normalized in {"disable", "allow"}:
                query["ssl"] = "disable"
            elif normalized in {"verify-ca", "verify-full"}:
                query["ssl"] = normalized
            else:
                query["ssl"] = "require"

    new_query = urlencode(query, doseq=True)
    return urlunsplit((scheme, parts.netloc, parts.path, new_query, parts.fragment))
