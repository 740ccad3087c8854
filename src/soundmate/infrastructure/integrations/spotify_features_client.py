"""Spotify audio-features client."""

import logging
import math
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from soundmate.application.services.feature_color_mapper import (
    normalize_loudness,
    normalize_tempo,
)
from soundmate.config import FeatureFetchSettings
from soundmate.domain.exceptions import (
    AuthenticationError,
    ExternalServiceError,
    RateLimitExceededError,
)
from soundmate.domain.ports import IAudioFeatureProvider
from soundmate.domain.value_objects import AudioFeatures
from soundmate.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def parse_audio_features(payload: dict[str, Any]) -> AudioFeatures:
    """Turn a raw ``/audio-features`` payload into a normalised vector.

    Missing values count as 0; loudness and tempo fall back to -30 dB and
    120 BPM before normalising. Popularity (0..100) is scaled to [0,1].
    """

    def _num(key: str, default: float = 0.0) -> float:
        value = payload.get(key)
        return float(value) if isinstance(value, int | float) and value else default

    return AudioFeatures(
        energy=_num("energy"),
        valence=_num("valence"),
        danceability=_num("danceability"),
        acousticness=_num("acousticness"),
        instrumentalness=_num("instrumentalness"),
        speechiness=_num("speechiness"),
        liveness=_num("liveness"),
        loudness=normalize_loudness(_num("loudness", -30.0)),
        tempo=normalize_tempo(_num("tempo", 120.0)),
        popularity=min(1.0, max(0.0, _num("popularity") / 100.0)),
    )


def parse_retry_after(value: str | None, now: datetime | None = None) -> int | None:
    """Seconds to wait from a Retry-After header, either delta-seconds or an HTTP-date.

    None (use the limiter's own backoff) when the header is missing or unreadable.
    """
    if not value:
        return None
    try:
        return max(0, int(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug("Ignoring unreadable Retry-After header %r", value)
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    delta = (retry_at - (now or datetime.now(UTC))).total_seconds()
    return max(0, math.ceil(delta))


class SpotifyAudioFeaturesClient(IAudioFeatureProvider):
    """Fetches audio features from the Spotify Web API."""

    def __init__(
        self,
        settings: FeatureFetchSettings,
        rate_limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self._rate_limiter = rate_limiter or RateLimiter.for_spotify()
        self._client = client

    # Hey future me, the client is created lazily on first use. Building an httpx.AsyncClient in
    # __init__ ties it to whatever event loop is current at construction time, which bites in
    # tests and during app startup.
    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.request_timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SpotifyAudioFeaturesClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _api_request(
        self, url: str, access_token: str, max_retries: int = 3
    ) -> httpx.Response:
        """GET with token bucket limiting and retry on 429."""
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {access_token}"}

        for attempt in range(max_retries + 1):
            async with self._rate_limiter:
                response = await client.get(url, headers=headers)

            if response.status_code != 429:
                return response

            retry_after_str = response.headers.get("Retry-After")
            retry_after = parse_retry_after(retry_after_str)
            if attempt >= max_retries:
                raise RateLimitExceededError(
                    f"Spotify rate limited after {max_retries} retries",
                    retry_after=retry_after,
                )

            wait_time = await self._rate_limiter.handle_rate_limit_response(retry_after)
            logger.warning(
                "Spotify 429 (attempt %d/%d): waited %.1fs, retrying %s",
                attempt + 1,
                max_retries,
                wait_time,
                url,
            )

        raise RateLimitExceededError("Spotify rate limited")

    async def get_audio_features(
        self, external_id: str, access_token: str | None = None
    ) -> AudioFeatures:
        if not access_token:
            raise AuthenticationError("Spotify access token required for audio features")

        url = f"{self.settings.spotify_api_url}/audio-features/{external_id}"
        try:
            response = await self._api_request(url, access_token)
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Spotify request failed: {e}") from e

        if response.status_code != 200:
            raise ExternalServiceError(
                f"Spotify audio-features returned {response.status_code}",
                status_code=response.status_code,
            )

        features = parse_audio_features(response.json())
        logger.debug(
            "Fetched audio features for %s (energy=%.2f, valence=%.2f)",
            external_id,
            features.energy or 0.0,
            features.valence or 0.0,
        )
        return features
