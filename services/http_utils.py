import time
from typing import Any, Optional

import requests


def post_json_with_retry(
    url: str,
    payload: Any,
    headers: Optional[dict] = None,
    timeout: float = 30,
    retries: int = 2,
    backoff_seconds: float = 0.4,
    session: Optional[requests.Session] = None,
):
    """
    POST a JSON body and return the decoded JSON response, with small
    retry/backoff. Client errors (4xx) are not retried.
    Raises the last exception if all attempts fail.
    """
    last_exc = None
    caller = session or requests

    for i in range(retries + 1):
        try:
            resp = caller.post(url, json=payload, headers=headers, timeout=timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.HTTPError as e:
            last_exc = e
            status = e.response.status_code if e.response is not None else None
            if status is not None and 400 <= status < 500 and status != 429:
                break
        except (requests.RequestException, ValueError) as e:
            last_exc = e
        if i < retries:
            time.sleep(backoff_seconds * (i + 1))
    raise last_exc
