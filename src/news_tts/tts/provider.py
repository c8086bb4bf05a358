"""
Speech-Synthesis Provider Client.

The provider turns text + voice parameters into audio bytes and serves
voice profiles from its voice directory. ElevenLabsProvider talks to the
ElevenLabs v1 REST API over a shared httpx.AsyncClient.

Endpoints:
    POST /v1/text-to-speech/{voice_id}?output_format=mp3_44100_128
        {"text": ..., "model_id": ..., "voice_settings": {...}}
    GET  /v1/voices/{voice_id}?with_settings=true

Error Classification:
    408, 409, 429, 5xx, timeouts, connection errors -> ProviderTransient
    400, 401, 403, 404, 422 and other 4xx           -> ProviderPermanent

The client performs no retries itself; callers wrap it in the synthesis
ResiliencePipeline.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional

import httpx

from news_tts.core.config import ProviderConfig
from news_tts.core.errors import ProviderPermanent, ProviderTransient
from news_tts.core.logging import debug, get_logger, verbose
from news_tts.core.metrics import NewsTTSMetrics, metrics as global_metrics
from news_tts.tts.formats import get_format
from news_tts.utils.timeit import timeit

_LOG = get_logger("news-tts.provider")

_TRANSIENT_STATUS = {408, 409, 425, 429}


@dataclass(frozen=True)
class VoiceSettings:
    """Synthesis parameters sent with every request."""
    stability: float = 0.5
    similarity_boost: float = 0.75
    style: float = 0.5
    use_speaker_boost: bool = True
    speed: float = 1.0

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "VoiceSettings":
        return cls(
            stability=config.stability,
            similarity_boost=config.similarity,
            style=config.style,
            use_speaker_boost=config.speaker_boost,
            speed=config.speed,
        )

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VoiceProfile:
    """A provider voice and its stored settings."""
    voice_id: str
    name: str
    stability: Optional[float] = None
    similarity: Optional[float] = None
    style: Optional[float] = None
    speaker_boost: Optional[bool] = None

    def merge_settings(self, defaults: VoiceSettings) -> VoiceSettings:
        """Overlay the profile's own settings on the configured defaults."""
        overrides: Dict[str, Any] = {}
        if self.stability is not None:
            overrides["stability"] = self.stability
        if self.similarity is not None:
            overrides["similarity_boost"] = self.similarity
        if self.style is not None:
            overrides["style"] = self.style
        if self.speaker_boost is not None:
            overrides["use_speaker_boost"] = self.speaker_boost
        return replace(defaults, **overrides)

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "VoiceProfile":
        settings = payload.get("settings") or {}
        return cls(
            voice_id=str(payload.get("voice_id", "")),
            name=str(payload.get("name", "")),
            stability=settings.get("stability"),
            similarity=settings.get("similarity_boost"),
            style=settings.get("style"),
            speaker_boost=settings.get("use_speaker_boost"),
        )


class SpeechProvider:
    """Interface of a synthesis provider. Implementations must be coroutine-safe."""

    async def synthesize(self, text: str, voice_id: str, settings: VoiceSettings, fmt: str) -> bytes:
        raise NotImplementedError

    async def get_voice(self, voice_id: str, with_settings: bool = True) -> VoiceProfile:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class ElevenLabsProvider(SpeechProvider):
    """ElevenLabs REST client."""

    def __init__(
        self,
        config: ProviderConfig,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[NewsTTSMetrics] = None,
    ):
        self.config = config
        self._metrics = metrics or global_metrics
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_s, connect=config.connect_timeout_s),
        )

    def _headers(self) -> Dict[str, str]:
        return {"xi-api-key": self.config.api_key, "Content-Type": "application/json"}

    async def synthesize(self, text: str, voice_id: str, settings: VoiceSettings, fmt: str) -> bytes:
        audio_format = get_format(fmt)
        payload = {
            "text": text,
            "model_id": self.config.model,
            "voice_settings": settings.to_payload(),
        }
        response = await self._request(
            "synthesize",
            "POST",
            f"/v1/text-to-speech/{voice_id}",
            params={"output_format": audio_format.provider_format},
            json=payload,
            headers={**self._headers(), "Accept": audio_format.content_type},
        )
        audio = response.content
        if not audio:
            raise ProviderTransient("provider returned an empty audio body", details={"voice_id": voice_id})
        verbose(_LOG, "provider_synthesized", voice_id=voice_id, chars=len(text), bytes=len(audio))
        return audio

    async def get_voice(self, voice_id: str, with_settings: bool = True) -> VoiceProfile:
        response = await self._request(
            "get_voice",
            "GET",
            f"/v1/voices/{voice_id}",
            params={"with_settings": str(with_settings).lower()},
            headers=self._headers(),
        )
        profile = VoiceProfile.from_api(response.json())
        if not profile.voice_id:
            profile = replace(profile, voice_id=voice_id)
        debug(_LOG, "provider_voice_loaded", voice_id=voice_id, name=profile.name)
        return profile

    async def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        with timeit(operation) as t:
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.TimeoutException as exc:
                self._metrics.record_provider_call(operation, "transient", t.seconds)
                raise ProviderTransient(f"provider timeout: {exc}", details={"operation": operation}) from exc
            except httpx.TransportError as exc:
                self._metrics.record_provider_call(operation, "transient", t.seconds)
                raise ProviderTransient(f"provider unreachable: {exc}", details={"operation": operation}) from exc

        status = response.status_code
        if status < 400:
            self._metrics.record_provider_call(operation, "success", t.seconds)
            return response

        details = {"operation": operation, "status": status, "body": response.text[:200]}
        if status >= 500 or status in _TRANSIENT_STATUS:
            self._metrics.record_provider_call(operation, "transient", t.seconds)
            raise ProviderTransient(f"provider returned {status}", details=details)
        self._metrics.record_provider_call(operation, "permanent", t.seconds)
        raise ProviderPermanent(f"provider rejected request with {status}", details=details)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
