"""AI Invocation Adapter: one canonical call in, one canonical result out.

Flow:
  1. resolve capability         (UnknownModelFamily)
  2. build dialect request      (unsupported controls dropped)
  3. select credential          (MissingCredential)
  4. POST with deadline         (ProviderTimeout / ProviderError)
  5. normalize dialect response (body with "error" -> ProviderError)

Steps 1-3 never touch the network. The adapter never retries.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import httpx
import structlog

from docpipe.core.config import settings
from docpipe.core.errors import ProviderError, ProviderTimeout
from docpipe.modules.pipeline.gateway.canonical import CanonicalAICall, CanonicalAIResult
from docpipe.modules.pipeline.gateway.capabilities import CapabilityRegistry, ModelCapability
from docpipe.modules.pipeline.gateway.credentials import CredentialProvider, redact
from docpipe.modules.pipeline.gateway.dialects import codec_for

logger = structlog.get_logger()

# Request keys that carry content rather than generation controls
_CONTENT_KEYS = frozenset({"model", "messages", "input", "instructions", "tools", "tool_choice"})


class AIInvocationAdapter:
    def __init__(
        self,
        registry: CapabilityRegistry,
        *,
        credentials: CredentialProvider | None = None,
        client: httpx.AsyncClient | None = None,
        default_timeout: float | None = None,
    ) -> None:
        self.registry = registry
        self.credentials = credentials or CredentialProvider()
        self._client = client
        self.default_timeout = default_timeout or settings.ai_timeout_seconds

    def build_request(self, call: CanonicalAICall) -> tuple[ModelCapability, dict[str, Any]]:
        cap = self.registry.resolve(call.model_family)
        return cap, codec_for(cap.api_dialect).build_request(call, cap)

    def transmitted_params(self, call: CanonicalAICall) -> dict[str, Any]:
        """Generation controls that would actually be sent for this call."""
        _, body = self.build_request(call)
        return {k: v for k, v in body.items() if k not in _CONTENT_KEYS}

    async def invoke(
        self,
        call: CanonicalAICall,
        *,
        timeout: float | None = None,
    ) -> CanonicalAIResult:
        cap, body = self.build_request(call)
        api_key = self.credentials.for_endpoint(cap.endpoint)
        deadline = timeout or self.default_timeout

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

        start = time.monotonic()
        try:
            if self._client is not None:
                response = await asyncio.wait_for(
                    self._client.post(cap.endpoint, json=body, headers=headers, timeout=deadline),
                    timeout=deadline,
                )
            else:
                async with httpx.AsyncClient(timeout=deadline) as client:
                    response = await asyncio.wait_for(
                        client.post(cap.endpoint, json=body, headers=headers),
                        timeout=deadline,
                    )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning(
                "AI call timed out",
                model_family=call.model_family,
                endpoint=cap.endpoint,
                timeout=deadline,
            )
            raise ProviderTimeout(cap.endpoint, deadline) from e
        except httpx.TransportError as e:
            logger.error("AI transport error", model_family=call.model_family, error=str(e))
            raise ProviderError(502, redact(str(e), api_key)) from e

        duration_ms = int((time.monotonic() - start) * 1000)

        if not response.is_success:
            body_text = redact(response.text, api_key)
            logger.error(
                "AI provider error",
                model_family=call.model_family,
                status=response.status_code,
                body=body_text[:500],
            )
            raise ProviderError(response.status_code, body_text)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                response.status_code, f"Invalid JSON body: {redact(response.text, api_key)[:500]}"
            ) from e

        if not isinstance(data, dict):
            raise ProviderError(response.status_code, "Response body is not a JSON object")
        if data.get("error"):
            raise ProviderError(
                response.status_code, redact(json.dumps(data["error"]), api_key)
            )

        result = codec_for(cap.api_dialect).normalize_response(data)

        logger.info(
            "AI call completed",
            model_family=call.model_family,
            dialect=cap.api_dialect.value,
            tool_calls=len(result.tool_invocations),
            tokens_in=result.tokens_in,
            tokens_out=result.tokens_out,
            duration_ms=duration_ms,
        )
        return result
