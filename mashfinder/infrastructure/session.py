import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

CONNECT_RETRIES = 1


def get_session(max_retries: int = CONNECT_RETRIES) -> requests.Session:
    """Session for outbound provider calls.

    Only connection failures are retried. Read timeouts and HTTP error statuses
    (including 429/503 with Retry-After) are returned to the caller untouched,
    so providers can map them to domain errors with the real status and headers.
    """
    session = requests.Session()
    retries = Retry(
        total=max_retries,
        connect=max_retries,
        read=0,
        status=0,
        redirect=None,
        respect_retry_after_header=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session
