"""
Voice Selection and Profile Cache.

Each language has a configured pool of voices (display name -> voice id).
Every resolve() picks one voice from the pool uniformly at random, using
the injected random.Random, then returns its full profile from the
provider's voice directory.

Profiles are cached for the process lifetime. Reads never lock; a miss
takes a per-voice asyncio.Lock so concurrent misses for the same voice
trigger a single provider fetch.
"""
from __future__ import annotations

import asyncio
import random
from typing import Dict, List, Optional

from news_tts.core.errors import ConfigurationMissing
from news_tts.core.logging import debug, get_logger, verbose
from news_tts.tts.provider import SpeechProvider, VoiceProfile
from news_tts.tts.resilience import ResiliencePipeline

_LOG = get_logger("news-tts.voices")


class VoiceSelector:

    def __init__(
        self,
        pools: Dict[str, Dict[str, str]],
        provider: SpeechProvider,
        pipeline: Optional[ResiliencePipeline] = None,
        rng: Optional[random.Random] = None,
    ):
        self._pools = {lang: dict(pool) for lang, pool in pools.items()}
        self._provider = provider
        self._pipeline = pipeline
        self._rng = rng or random.Random()
        self._profiles: Dict[str, VoiceProfile] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def languages(self) -> List[str]:
        return sorted(self._pools)

    def pool(self, language: str) -> Dict[str, str]:
        """Voice pool for a language (empty if none is configured)."""
        return dict(self._pools.get(language, {}))

    def pick(self, language: str) -> str:
        """
        Pick a voice id for the language.

        Raises:
            ConfigurationMissing: No voice pool is configured for the language.
        """
        pool = self._pools.get(language)
        if not pool:
            raise ConfigurationMissing(
                f"no voices configured for language {language!r}",
                details={"language": language, "configured": self.languages()},
            )
        # Sorted so a seeded RNG gives reproducible picks regardless of YAML order
        names = sorted(pool)
        name = self._rng.choice(names)
        debug(_LOG, "voice_picked", language=language, voice=name)
        return pool[name]

    async def resolve(self, language: str) -> VoiceProfile:
        voice_id = self.pick(language)
        profile = self._profiles.get(voice_id)
        if profile is not None:
            return profile
        return await self._fetch(voice_id)

    def cached(self, voice_id: str) -> Optional[VoiceProfile]:
        return self._profiles.get(voice_id)

    def cache_size(self) -> int:
        return len(self._profiles)

    async def _fetch(self, voice_id: str) -> VoiceProfile:
        lock = self._locks.setdefault(voice_id, asyncio.Lock())
        async with lock:
            profile = self._profiles.get(voice_id)
            if profile is not None:
                return profile
            if self._pipeline is not None:
                profile = await self._pipeline.execute(self._provider.get_voice, voice_id, True)
            else:
                profile = await self._provider.get_voice(voice_id, True)
            self._profiles[voice_id] = profile
            verbose(_LOG, "voice_cached", voice_id=voice_id, name=profile.name)
            return profile
