from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from ..core.config import settings
from ..core.errors import ConfigurationError, UpstreamProviderError

log = logging.getLogger(__name__)

TTS_MODELS = (
    "eleven_multilingual_v2",
    "eleven_flash_v2_5",
    "eleven_turbo_v2_5",
    "eleven_turbo_v2",
    "eleven_flash_v2",
)
STT_MODELS = ("scribe_v1",)
STS_MODELS = ("eleven_multilingual_sts_v2", "eleven_english_sts_v2")
MUSIC_MODELS = ("music_v1",)
SOUND_EFFECTS_MODEL = "sound_effects_v1"

DEFAULT_OUTPUT_FORMAT = "mp3_44100_128"

# Pre-made voices available to every account
VOICES = {
    "2EiwWnXFnvU5JabPnv8n": "Clyde",
    "CwhRBWXzGAHq8TQ4Fs17": "Roger",
    "EXAVITQu4vr4xnSDxMaL": "Sarah",
    "FGY2WhTYpPnrIDTdsKH5": "Laura",
    "IKne3meq5aSn9XLyUdCD": "Charlie",
    "JBFqnCBsd6RMkjVDRZzb": "George",
    "N2lVS1w4EtoT3dr4eOWO": "Callum",
    "SAz9YHcvj6GT2YYXdXww": "River",
    "TX3LPaxmHKxFdv7VOQHJ": "Liam",
    "Xb7hH8MSUJpSbSDYk0k2": "Alice",
    "XrExE9yKIg1WjnnlVkGX": "Matilda",
    "bIHbv24MWmeRgasZH58o": "Will",
    "cgSgspJ2msm6clMCkdW9": "Jessica",
    "cjVigY5qzO86Huf0OWal": "Eric",
    "iP95p4xoKVk53GoZ742B": "Chris",
    "nPczCjzI2devNBz1zQrb": "Brian",
    "onwK4e9ZLuTAKqWW03F9": "Daniel",
    "pFZP5JQG7iQjIQuC4Bku": "Lily",
    "pNInz6obpgDQGcFmaJgB": "Adam",
    "pqHfZKP75CvOlQylNhV4": "Bill",
}


def mime_type_for(output_format: str) -> str:
    if output_format.startswith("pcm_"):
        return "audio/pcm"
    if output_format.startswith("ulaw_"):
        return "audio/basic"
    return "audio/mpeg"


@dataclass(frozen=True)
class VoiceSettings:
    stability: float = 0.5
    similarity_boost: float = 0.75
    style: float = 0.0
    use_speaker_boost: bool = False
    speed: float = 1.0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
            "style": self.style,
            "use_speaker_boost": self.use_speaker_boost,
            "speed": self.speed,
        }


@dataclass(frozen=True)
class AudioResult:
    audio: bytes
    mime_type: str
    model: str


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    model: str
    language_code: Optional[str] = None
    words: Optional[List[Dict[str, Any]]] = None


class ElevenLabsService:
    """Thin wrapper for the ElevenLabs v1 REST API.

    Every call raises ``UpstreamProviderError`` with a generic message on
    failure; provider details only go to the log.
    """

    BASE_URL = "https://api.elevenlabs.io/v1"

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.api_key = api_key or settings.ELEVENLABS_API_KEY
        if not self.api_key:
            raise ConfigurationError(
                "ElevenLabs is not configured. Set ELEVENLABS_API_KEY.",
                setting="ELEVENLABS_API_KEY",
            )
        self.timeout = timeout or float(settings.ELEVENLABS_TIMEOUT_SECONDS)

    def _headers(self) -> Dict[str, str]:
        return {"xi-api-key": self.api_key}

    def _post(
        self,
        operation: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(
                    f"{self.BASE_URL}{path}",
                    headers=self._headers(),
                    params=params,
                    json=json_body,
                    data=data,
                    files=files,
                )
                resp.raise_for_status()
                return resp
        except httpx.HTTPStatusError as exc:
            log.error(
                "event=elevenlabs.http_error operation=%s status=%s body=%s",
                operation,
                exc.response.status_code,
                exc.response.text[:500],
            )
            raise UpstreamProviderError("elevenlabs", f"Failed to {operation}. Please try again.") from exc
        except httpx.HTTPError as exc:
            log.error("event=elevenlabs.request_failed operation=%s error=%s", operation, exc)
            raise UpstreamProviderError("elevenlabs", f"Failed to {operation}. Please try again.") from exc

    def text_to_speech(
        self,
        text: str,
        voice_id: str,
        model: str,
        voice_settings: Optional[VoiceSettings] = None,
        output_format: str = DEFAULT_OUTPUT_FORMAT,
    ) -> AudioResult:
        body: Dict[str, Any] = {"text": text.strip(), "model_id": model}
        if voice_settings is not None:
            body["voice_settings"] = voice_settings.to_payload()
        log.info("event=elevenlabs.tts model=%s voice_id=%s chars=%s", model, voice_id, len(text))
        resp = self._post(
            "generate audio",
            f"/text-to-speech/{voice_id}",
            params={"output_format": output_format},
            json_body=body,
        )
        return AudioResult(audio=resp.content, mime_type=mime_type_for(output_format), model=model)

    def speech_to_text(
        self,
        audio: bytes,
        filename: str,
        model: str = STT_MODELS[0],
        language_code: Optional[str] = None,
        tag_audio_events: bool = True,
        diarize: bool = False,
    ) -> TranscriptionResult:
        data: Dict[str, Any] = {
            "model_id": model,
            "tag_audio_events": str(tag_audio_events).lower(),
            "diarize": str(diarize).lower(),
        }
        if language_code:
            data["language_code"] = language_code
        log.info("event=elevenlabs.stt model=%s bytes=%s", model, len(audio))
        resp = self._post(
            "transcribe audio",
            "/speech-to-text",
            data=data,
            files={"file": (filename, audio)},
        )
        payload = resp.json()
        return TranscriptionResult(
            text=str(payload.get("text") or ""),
            model=model,
            language_code=payload.get("language_code"),
            words=payload.get("words"),
        )

    def speech_to_speech(
        self,
        audio: bytes,
        filename: str,
        voice_id: str,
        model: str = STS_MODELS[0],
        remove_background_noise: bool = False,
        voice_settings: Optional[VoiceSettings] = None,
        output_format: str = DEFAULT_OUTPUT_FORMAT,
    ) -> AudioResult:
        data: Dict[str, Any] = {
            "model_id": model,
            "remove_background_noise": str(remove_background_noise).lower(),
        }
        if voice_settings is not None:
            data["voice_settings"] = json.dumps(voice_settings.to_payload())
        log.info("event=elevenlabs.sts model=%s voice_id=%s bytes=%s", model, voice_id, len(audio))
        resp = self._post(
            "change voice",
            f"/speech-to-speech/{voice_id}",
            params={"output_format": output_format},
            data=data,
            files={"audio": (filename, audio)},
        )
        return AudioResult(audio=resp.content, mime_type=mime_type_for(output_format), model=model)

    def compose_music(
        self,
        prompt: str,
        music_length_ms: Optional[int] = None,
        model: str = MUSIC_MODELS[0],
        force_instrumental: bool = False,
        output_format: str = DEFAULT_OUTPUT_FORMAT,
    ) -> AudioResult:
        body: Dict[str, Any] = {
            "prompt": prompt.strip(),
            "model_id": model,
            "force_instrumental": force_instrumental,
        }
        if music_length_ms is not None:
            body["music_length_ms"] = int(music_length_ms)
        log.info("event=elevenlabs.music model=%s length_ms=%s", model, music_length_ms or "auto")
        resp = self._post("generate music", "/music", params={"output_format": output_format}, json_body=body)
        return AudioResult(audio=resp.content, mime_type=mime_type_for(output_format), model=model)

    def sound_effect(
        self,
        text: str,
        duration_seconds: Optional[float] = None,
        prompt_influence: float = 0.3,
        output_format: str = DEFAULT_OUTPUT_FORMAT,
    ) -> AudioResult:
        body: Dict[str, Any] = {"text": text.strip(), "prompt_influence": prompt_influence}
        if duration_seconds is not None:
            body["duration_seconds"] = float(duration_seconds)
        log.info("event=elevenlabs.sound_effect duration=%s", duration_seconds or "auto")
        resp = self._post(
            "generate sound effect",
            "/sound-generation",
            params={"output_format": output_format},
            json_body=body,
        )
        return AudioResult(audio=resp.content, mime_type=mime_type_for(output_format), model=SOUND_EFFECTS_MODEL)


def get_elevenlabs_service() -> ElevenLabsService:
    """FastAPI dependency; tests override it with a fake."""
    return ElevenLabsService()


__all__ = [
    "ElevenLabsService",
    "VoiceSettings",
    "AudioResult",
    "TranscriptionResult",
    "get_elevenlabs_service",
    "mime_type_for",
    "TTS_MODELS",
    "STT_MODELS",
    "STS_MODELS",
    "MUSIC_MODELS",
    "SOUND_EFFECTS_MODEL",
    "VOICES",
    "DEFAULT_OUTPUT_FORMAT",
]
