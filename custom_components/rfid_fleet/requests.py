"""
Low-level HTTP request library for the fleet backend.
This module handles all HTTP requests with automatic retry logic and proper error handling.
"""
import asyncio
import logging
import aiohttp


_LOGGER = logging.getLogger(__name__)

REQUEST_TIMEOUT = 5  # seconds, multiplied by attempt number for each retry
REQUEST_ATTEMPTS = 3  # maximum number of retry attempts


class ApiResponseError(Exception):
    """Exception raised when the backend returns an error response."""
    def __init__(self, status: int, error_json: dict | None = None):
        self.status = status
        self.error_json = error_json or {}
        super().__init__(f"API Error (HTTP {status}): {self.error_json}")

    @property
    def is_auth_error(self) -> bool:
        return self.status in (401, 403)


def build_url(api_url: str, path: str) -> str:
    """Join the configured API root and an endpoint path."""
    return api_url.rstrip("/") + "/" + path.lstrip("/")


def get_standard_headers(token: str | None) -> dict:
    """
    Build the HTTP headers used by every backend request.

    :param token: Static bearer token from the config entry, or None for open backends.
    :return: Dictionary of HTTP headers.
    """
    headers = {"accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def check_backend_availability(api_url: str, timeout: int = 15) -> bool:
    """
    Check if the backend is reachable by sending a HEAD request to the API root.

    Args:
        api_url: Base URL of the fleet API
        timeout: Timeout in seconds for the HEAD request

    Returns:
        True if the backend answered with anything below 500, False otherwise
    """
    try:
        timeout_config = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=timeout_config) as session:
            async with session.head(api_url) as response:
                if response.status >= 500:
                    _LOGGER.warning("Fleet API is not reachable (status %s)", response.status)
                    return False
                return True

    except (asyncio.TimeoutError, TimeoutError):
        _LOGGER.warning("Timeout while checking fleet API URL")
        return False
    except aiohttp.ClientError as e:
        _LOGGER.error("Error while checking fleet API availability: %s", e)
        return False


async def make_request(
    method: str,
    url: str,
    headers: dict,
    payload: dict = None,
    params: dict = None,
    timeout: int = REQUEST_TIMEOUT,
    max_attempts: int = REQUEST_ATTEMPTS,
):
    """
    Make an HTTP request with automatic retry on timeout.

    Args:
        method: HTTP method (GET or POST)
        url: Target URL for the request
        headers: HTTP headers dictionary
        payload: JSON payload for POST requests (optional)
        params: URL query parameters (optional)
        timeout: Base timeout in seconds (multiplied by attempt number for each retry)
        max_attempts: Maximum number of retry attempts

    Returns:
        Parsed JSON response

    Raises:
        asyncio.TimeoutError: If all retry attempts timeout
        ApiResponseError: If the backend answers with a non-200 status
        ValueError: If a successful response is not JSON
    """
    method = method.upper()
    if method not in ("GET", "POST"):
        raise ValueError(f"Unsupported HTTP method: {method}")

    for attempt in range(max_attempts):
        # Timeout grows with each attempt
        timeout_config = aiohttp.ClientTimeout(total=timeout * (attempt + 1))
        try:
            async with aiohttp.ClientSession(timeout=timeout_config) as session:
                async with session.request(
                    method, url, headers=headers, json=payload, params=params
                ) as response:
                    return await _process_response(response, url)

        except (asyncio.TimeoutError, TimeoutError):
            if attempt < max_attempts - 1:
                _LOGGER.debug("Timeout on %s %s (attempt %s), retrying", method, url, attempt + 1)
                continue
            _LOGGER.warning(
                "Timeout on %s request to %s after %s attempts",
                method, url, max_attempts
            )
            raise

    # Only reachable with max_attempts < 1
    raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")


async def _process_response(response, url: str):
    """
    Process HTTP response and extract JSON data.

    Args:
        response: aiohttp response object
        url: Request URL (for logging)

    Returns:
        Parsed JSON response

    Raises:
        ValueError: If a successful response has an unexpected content type
        ApiResponseError: For any non-200 status
    """
    content_type = response.headers.get('Content-Type', '')

    if response.status == 200:
        if 'application/json' in content_type:
            return await response.json()
        _LOGGER.warning(
            "Unexpected content type in successful response: %s (status %s) from %s",
            content_type, response.status, url
        )
        text = await response.text()
        raise ValueError(f"Expected JSON but got {content_type}: {text[:200]}")

    if 'application/json' in content_type:
        try:
            error_json = await response.json()
        except (aiohttp.ContentTypeError, ValueError) as e:
            _LOGGER.error(
                "Failed to parse error response as JSON from %s: %s (status %s)",
                url, e, response.status
            )
            error_json = None
        raise ApiResponseError(response.status, error_json if isinstance(error_json, dict) else None)

    # Non-JSON error response (e.g., HTML error page)
    text = await response.text()
    _LOGGER.warning(
        "Received non-JSON error response from %s: status %s, content-type: %s, body preview: %s",
        url, response.status, content_type, text[:200]
    )
    raise ApiResponseError(response.status, {"message": text[:200]})
