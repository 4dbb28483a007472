"""
JustCall SMS API client.

Wraps the provider calls the service needs (send a text, look up a text,
list text history) and normalises transport failures into ProviderError /
ProviderTimeoutError.

Docs: https://developer.justcall.io/reference/texts_new_v21
"""

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from sms_confirm.errors import ConfigurationError, ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)


def extract_message_id(response_data: Any) -> Tuple[str, Optional[str]]:
    """
    Pull the provider message id and delivery status out of a send response.

    The provider returns either `{"id": ..., "delivery_status": ...}` or
    `{"data": [{"id": ..., "status": ...}, ...]}`.

    Raises:
        ProviderError: if neither shape carries an id
    """
    if isinstance(response_data, dict):
        message_id = response_data.get("id")
        status = response_data.get("delivery_status") or response_data.get("status")

        data = response_data.get("data")
        if not message_id and isinstance(data, list) and data and isinstance(data[0], dict):
            message_id = data[0].get("id")
            status = data[0].get("delivery_status") or data[0].get("status")
            logger.debug(f"Found message id in data array: {message_id}")

        if message_id:
            return str(message_id), (str(status) if status else None)

    logger.error(f"JustCall API did not return a message ID: {response_data}")
    raise ProviderError("JustCall API did not return a message ID", details=response_data)


class JustCallClient:
    """
    Async client for the JustCall v2.1 texts API.

    A new httpx.AsyncClient is opened per call; `transport` lets tests swap
    in an httpx.MockTransport.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        api_secret: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def _client(self) -> httpx.AsyncClient:
        if not self.configured:
            raise ConfigurationError("JustCall API credentials not configured")
        return httpx.AsyncClient(
            base_url=self.api_url,
            auth=(self.api_key, self.api_secret),
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        async with self._client() as client:
            try:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
            except httpx.TimeoutException as e:
                logger.error(f"JustCall {method} {path} timed out after {self.timeout}s")
                raise ProviderTimeoutError(f"JustCall API timed out after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                details = _safe_json(e.response)
                message = "Failed to send SMS"
                if isinstance(details, dict):
                    message = details.get("message") or details.get("error") or message
                logger.error(f"JustCall API error {e.response.status_code}: {details}")
                raise ProviderError(message, status_code=e.response.status_code, details=details) from e
            except httpx.RequestError as e:
                logger.error(f"JustCall request failed: {e}")
                raise ProviderError(f"JustCall request failed: {e}") from e

        data = _safe_json(response)
        if data is None:
            raise ProviderError("JustCall API returned a non-JSON response", status_code=response.status_code)
        return data

    async def send_text(
        self,
        sender: str,
        recipient: str,
        body: str,
        restrict_once: str = "No",
        media_url: Optional[str] = None,
        schedule_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        """POST /texts/new and return the decoded response body."""
        payload: Dict[str, Any] = {
            "justcall_number": sender,
            "body": body,
            "contact_number": recipient,
            "restrict_once": restrict_once,
        }
        if media_url:
            payload["media_url"] = media_url
        if schedule_at:
            payload["schedule_at"] = schedule_at

        logger.info(f"Sending SMS via JustCall: from={sender}, to={recipient}, body={body[:100]!r}")
        data = await self._request("POST", "/texts/new", json=payload)
        logger.debug(f"JustCall send response: {data}")
        return data

    async def get_text(self, provider_message_id: str) -> Any:
        """GET /texts/{id}: provider-side status of a sent text."""
        return await self._request("GET", f"/texts/{provider_message_id}")

    async def list_texts(
        self,
        limit: int = 50,
        offset: int = 0,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        to: Optional[str] = None,
        from_: Optional[str] = None,
    ) -> Any:
        """GET /texts: the account's SMS history, filtered and paged."""
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if start_date:
            params["start_date"] = start_date
        if end_date:
            params["end_date"] = end_date
        if to:
            params["to"] = to
        if from_:
            params["from"] = from_
        return await self._request("GET", "/texts", params=params)


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
