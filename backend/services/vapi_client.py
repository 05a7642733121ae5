# vapi_client.py
import os
import json
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.vapi.ai"
DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"

SYSTEM_PROMPT_TEMPLATE = (
    "You are an AI recruiter conducting a voice interview for a {position} position. "
    "Be professional, friendly, and ask relevant technical and behavioral questions. "
    "Keep responses concise and conversational. The candidate's name is {candidate_name}."
)

FIRST_MESSAGE_TEMPLATE = (
    "Hello {candidate_name}! Thank you for joining today's interview for the {position} position. "
    "I'm your AI interviewer, and I'm excited to learn more about you. "
    "Could you please start by telling me a bit about yourself and your background?"
)


class VapiError(Exception):
    """Raised when the voice provider rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details if details is not None else message


def _error_details(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class VapiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        base_url: Optional[str] = None,
        voice_id: Optional[str] = None,
        timeout: Optional[float] = None,
        simulate: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("VAPI_API_KEY")
        self.phone_number_id = phone_number_id if phone_number_id is not None else os.getenv("VAPI_PHONE_NUMBER_ID")
        self.base_url = (base_url or os.getenv("VAPI_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.voice_id = voice_id or os.getenv("VAPI_VOICE_ID") or DEFAULT_VOICE_ID
        self.timeout = timeout if timeout is not None else float(os.getenv("VAPI_TIMEOUT_SECONDS", "30"))
        if simulate is None:
            simulate = os.getenv("VAPI_SIMULATE", "false").lower() == "true"
        self.simulated = simulate
        self._transport = transport

        if self.simulated:
            logger.info("VapiClient initialized in simulation mode (VAPI_SIMULATE=true)")
        elif not self.api_key:
            logger.warning("VAPI_API_KEY is not set; provider calls will be rejected")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    def build_call_payload(self, candidate_name: str, candidate_phone: str, position: str) -> Dict[str, Any]:
        values = {"candidate_name": candidate_name, "position": position}
        return {
            "phoneNumberId": self.phone_number_id,
            "customer": {
                "number": candidate_phone,
                "name": candidate_name,
            },
            "assistant": {
                "model": {
                    "provider": "openai",
                    "model": "gpt-4",
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT_TEMPLATE.format(**values)},
                    ],
                },
                "voice": {
                    "provider": "11labs",
                    "voiceId": self.voice_id,
                },
                "firstMessage": FIRST_MESSAGE_TEMPLATE.format(**values),
            },
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.post(path, headers=self._headers(), json=payload)
                logger.info(f"Vapi {path} response: {response.status_code}")
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            details = _error_details(e.response)
            logger.error(f"Vapi API HTTP error: {e.response.status_code} - {details}")
            raise VapiError(
                f"Vapi API returned {e.response.status_code}",
                status_code=e.response.status_code,
                details=details,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Vapi API request error: {e}")
            raise VapiError(f"Vapi API request failed: {e}") from e

    async def create_call(self, candidate_name: str, candidate_phone: str, position: str) -> Dict[str, Any]:
        """Place an outbound interview call. Returns the provider's call object."""
        logger.info(f"Starting Vapi call to {candidate_phone} for {position}")

        if self.simulated:
            call_id = f"sim-{uuid4().hex[:12]}"
            logger.info(f"[SIMULATED] Call queued: {call_id}")
            return {"id": call_id, "status": "queued", "simulated": True}

        payload = self.build_call_payload(candidate_name, candidate_phone, position)
        logger.debug(f"Vapi create-call payload: {json.dumps(payload, indent=2)}")

        response = await self._post("/call", payload)
        try:
            result = response.json()
        except ValueError as e:
            raise VapiError("Vapi API returned a non-JSON response", details=response.text) from e

        if not isinstance(result, dict) or not result.get("id"):
            raise VapiError("Vapi API response is missing the call id", details=result)
        return result

    async def end_call(self, call_id: str) -> None:
        """Ask the provider to hang up."""
        logger.info(f"Ending Vapi call: {call_id}")

        if self.simulated:
            logger.info(f"[SIMULATED] Ending call: {call_id}")
            return

        await self._post(f"/call/{call_id}/end", {})
