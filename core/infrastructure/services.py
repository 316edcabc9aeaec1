import re
from typing import Any, Dict, List, Pattern
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from redis.asyncio import Redis

from config.base import Settings


class DataSanitizer:
    """Data sanitizer for masking sensitive information in logs and event payloads.

    Notification contexts are free-form and may carry contact details or
    integration secrets, so anything written to a log sink goes through
    `sanitize_for_logging` first.
    """

    def __init__(self):
        self.sensitive_patterns: List[Pattern[str]] = [
            re.compile(r"password", re.IGNORECASE),
            re.compile(r"secret", re.IGNORECASE),
            re.compile(r"token", re.IGNORECASE),
            re.compile(r"api_?key", re.IGNORECASE),
            re.compile(r"auth", re.IGNORECASE),
            re.compile(r"credential", re.IGNORECASE),
            re.compile(r"session", re.IGNORECASE),
            re.compile(r"phone", re.IGNORECASE),
        ]
        self.email_pattern = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
        self.url_pattern = re.compile(r"https?://[^\s]+\?[^\s]+")

    def sanitize_for_logging(self, data: Any) -> Any:
        """Sanitize data for logging purposes.

        Parameters
        ----------
        data: Any
            String, mapping, sequence or scalar to sanitize.

        Returns
        -------
        Any
            Copy of `data` with sensitive values masked.
        """
        return self._sanitize_value(data)

    def sanitize_exception_for_logging(self, exception: Exception | str) -> str:
        """Render an exception as a sanitized, single-line message.

        Parameters
        ----------
        exception: Exception | str
            Exception (or pre-rendered message) to sanitize.

        Returns
        -------
        str
            Sanitized message, or a generic placeholder if rendering fails.
        """
        try:
            if isinstance(exception, str):
                return self._sanitize_string(exception)

            text = str(exception)
            text = re.sub(
                r"\[parameters: .*?\]", "[parameters: ***SANITIZED***]", text, flags=re.S
            )
            return f"{type(exception).__name__}: {self._sanitize_string(text)}"
        except Exception:
            return f"***SANITIZED*** {type(exception).__name__}"

    def is_sensitive_field(self, field_name: str) -> bool:
        return any(pattern.search(field_name) for pattern in self.sensitive_patterns)

    def mask_email(self, email: str) -> str:
        """Mask an email address, keeping the first and last character of the local part.

        Parameters
        ----------
        email: str
            Email string to mask.

        Returns
        -------
        str
            Masked email string (e.g., p****y@example.com).
        """
        local, _, domain = email.partition("@")
        if not domain:
            return "***@***.***"
        if len(local) <= 2:
            return f"{'*' * len(local)}@{domain}"
        return f"{local[0]}{'*' * (len(local) - 2)}{local[-1]}@{domain}"

    def _sanitize_url(self, url: str) -> str:
        parsed = urlparse(url)
        query = [
            (key, "***MASKED***" if self.is_sensitive_field(key) else value)
            for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        ]
        return urlunparse(parsed._replace(query=urlencode(query, safe="*")))

    def _sanitize_string(self, text: str, max_length: int = 1000) -> str:
        if len(text) > max_length:
            text = text[:max_length] + "..."

        text = self.email_pattern.sub(lambda m: self.mask_email(m.group()), text)
        return self.url_pattern.sub(lambda m: self._sanitize_url(m.group()), text)

    def _sanitize_dict(self, data: Dict[str, Any], max_depth: int) -> Dict[str, Any]:
        if max_depth <= 0:
            return {"<max_depth_reached>": "..."}

        return {
            key: (
                "***MASKED***"
                if self.is_sensitive_field(str(key))
                else self._sanitize_value(value, max_depth - 1)
            )
            for key, value in data.items()
        }

    def _sanitize_value(self, value: Any, max_depth: int = 5) -> Any:
        if value is None or isinstance(value, (bool, int, float)):
            return value
        if isinstance(value, dict):
            return self._sanitize_dict(value, max_depth)
        if isinstance(value, (list, tuple, set)):
            if max_depth <= 0:
                return ["<max_depth_reached>"]
            return [self._sanitize_value(item, max_depth - 1) for item in list(value)[:20]]
        return self._sanitize_string(str(value))


class RedisService:
    """Holder of the shared asynchronous Redis client.

    The client is created lazily on first use so importing the application
    never opens a connection.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._redis: Redis | None = None

    async def _get_redis(self) -> Redis:
        """Establish and return an asynchronous Redis client instance.

        Returns
        -------
        Redis
            Asynchronous Redis client instance with string responses.
        """
        if self._redis is None:
            self._redis = Redis(
                host=self._settings.redis_host,
                port=self._settings.redis_port,
                db=self._settings.redis_db,
                password=self._settings.redis_password,
                decode_responses=True,
                socket_connect_timeout=self._settings.redis_socket_connect_timeout,
                socket_timeout=self._settings.redis_socket_timeout,
                retry_on_timeout=True,
                health_check_interval=30,
                ssl_cert_reqs=self._settings.ssl_cert_reqs,
                ssl=self._settings.redis_use_ssl,
                max_connections=10,
            )

        return self._redis

    async def ping(self) -> bool:
        redis_client = await self._get_redis()
        return await redis_client.ping()

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
