import requests

from .settings import settings

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "zh-CN,zh;q=0.9",
}


class Transport(requests.Session):
    """
    Cookie-bearing HTTP client owned by exactly one user session.

    Every request gets a bounded (connect, read) timeout unless the caller
    passes its own.
    """

    def __init__(self, connect_timeout: float | None = None, read_timeout: float | None = None):
        super().__init__()
        self.headers.update(DEFAULT_HEADERS)
        self.timeout = (
            connect_timeout if connect_timeout is not None else settings.HTTP_CONNECT_TIMEOUT,
            read_timeout if read_timeout is not None else settings.HTTP_READ_TIMEOUT,
        )
        self.closed = False

    def request(self, method, url, **kwargs):
        kwargs.setdefault("timeout", self.timeout)
        return super().request(method, url, **kwargs)

    def close(self):
        super().close()
        self.closed = True
