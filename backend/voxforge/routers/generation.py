"""ElevenLabs-backed generation endpoints.

Each request is gated on the caller's monthly ``audio`` quota. The counter is
only bumped after the provider call and storage write both succeed, and the
increment runs as a background task once the response is sent.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel
from sqlmodel import Session

from ..core.auth import get_current_user
from ..core.database import get_session
from ..models.enums import MediaKind, UsageCategory
from ..models.media import MediaAsset, MediaAssetPublic
from ..models.user import User
from ..services.billing.usage import check_usage_limit, schedule_usage_tracking
from ..services.elevenlabs_service import (
    MUSIC_MODELS,
    STS_MODELS,
    STT_MODELS,
    TTS_MODELS,
    VOICES,
    ElevenLabsService,
    VoiceSettings,
    get_elevenlabs_service,
)
from ..services.storage import StorageError, StorageService, get_storage_service

log = logging.getLogger(__name__)

router = APIRouter(prefix="/generation", tags=["Generation"])

MAX_TTS_CHARS = 5000
MAX_UPLOAD_BYTES = 50 * 1024 * 1024
SPEED_RANGE = (0.7, 1.2)
SOUND_DURATION_RANGE = (0.5, 22.0)
MUSIC_LENGTH_RANGE_MS = (10_000, 300_000)


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail=message)


def _check_unit(name: str, value: Optional[float]) -> None:
    if value is not None and not 0.0 <= value <= 1.0:
        raise _bad_request(f"{name} must be between 0 and 1")


class VoiceSettingsIn(BaseModel):
    stability: Optional[float] = None
    similarity_boost: Optional[float] = None
    style: Optional[float] = None
    use_speaker_boost: Optional[bool] = None
    speed: Optional[float] = None

    def validated(self) -> VoiceSettings:
        _check_unit("stability", self.stability)
        _check_unit("similarity_boost", self.similarity_boost)
        _check_unit("style", self.style)
        if self.speed is not None and not SPEED_RANGE[0] <= self.speed <= SPEED_RANGE[1]:
            raise _bad_request(f"speed must be between {SPEED_RANGE[0]} and {SPEED_RANGE[1]}")
        defaults = VoiceSettings()
        return VoiceSettings(
            stability=defaults.stability if self.stability is None else self.stability,
            similarity_boost=defaults.similarity_boost if self.similarity_boost is None else self.similarity_boost,
            style=defaults.style if self.style is None else self.style,
            use_speaker_boost=defaults.use_speaker_boost if self.use_speaker_boost is None else self.use_speaker_boost,
            speed=defaults.speed if self.speed is None else self.speed,
        )


class SpeechRequest(BaseModel):
    text: str
    voiceId: str
    model: str = TTS_MODELS[0]
    voiceSettings: Optional[VoiceSettingsIn] = None


class MusicRequest(BaseModel):
    prompt: str
    musicLengthMs: Optional[int] = None
    forceInstrumental: bool = False
    model: str = MUSIC_MODELS[0]


class SoundEffectRequest(BaseModel):
    text: str
    durationSeconds: Optional[float] = None
    promptInfluence: float = 0.3


def _save_asset(
    session: Session,
    storage: StorageService,
    user: User,
    kind: MediaKind,
    data: bytes,
    mime_type: str,
    **fields: Any,
) -> MediaAsset:
    key = storage.generate_filename(user.id, kind, mime_type)
    try:
        stored = storage.upload(key, data, mime_type)
    except StorageError as exc:
        log.error("event=generation.store_failed user_id=%s kind=%s error=%s", user.id, kind.value, exc)
        raise HTTPException(status_code=500, detail="Failed to save generated media")
    asset = MediaAsset(
        user_id=user.id,
        kind=kind,
        filename=key.rsplit("/", 1)[-1],
        mime_type=mime_type,
        file_size=stored.size,
        storage_location=stored.location,
        cloud_path=stored.path,
        **fields,
    )
    session.add(asset)
    session.commit()
    session.refresh(asset)
    return asset


def _asset_response(asset: MediaAsset, **extra: Any) -> Dict[str, Any]:
    body = {"asset": MediaAssetPublic.model_validate(asset).model_dump(mode="json"), "assetId": str(asset.id)}
    body.update(extra)
    return body


async def _read_upload(upload: UploadFile) -> bytes:
    data = await upload.read()
    if not data:
        raise _bad_request("Audio file is required")
    if len(data) > MAX_UPLOAD_BYTES:
        raise _bad_request("Audio file is too large")
    return data


@router.post("/speech")
def generate_speech(
    req: SpeechRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    eleven: ElevenLabsService = Depends(get_elevenlabs_service),
    storage: StorageService = Depends(get_storage_service),
):
    text = (req.text or "").strip()
    if not text:
        raise _bad_request("Text is required")
    if len(text) > MAX_TTS_CHARS:
        raise _bad_request(f"Text must be {MAX_TTS_CHARS} characters or fewer")
    if not (req.voiceId or "").strip():
        raise _bad_request("Voice is required")
    if req.model not in TTS_MODELS:
        raise _bad_request("Invalid model selected")
    voice_settings = req.voiceSettings.validated() if req.voiceSettings else None

    remaining = check_usage_limit(session, current_user.id, UsageCategory.audio)
    result = eleven.text_to_speech(text, req.voiceId.strip(), req.model, voice_settings)
    asset = _save_asset(
        session,
        storage,
        current_user,
        MediaKind.speech,
        result.audio,
        result.mime_type,
        text=text,
        model=result.model,
        voice_id=req.voiceId.strip(),
    )
    schedule_usage_tracking(background_tasks, current_user.id, UsageCategory.audio)
    return _asset_response(asset, remainingQuota=remaining)


@router.post("/transcription")
async def transcribe_audio(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    model: str = Form(STT_MODELS[0]),
    languageCode: Optional[str] = Form(None),
    tagAudioEvents: bool = Form(True),
    diarize: bool = Form(False),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    eleven: ElevenLabsService = Depends(get_elevenlabs_service),
    storage: StorageService = Depends(get_storage_service),
):
    if model not in STT_MODELS:
        raise _bad_request("Invalid model selected")
    audio = await _read_upload(file)

    remaining = check_usage_limit(session, current_user.id, UsageCategory.audio)
    result = eleven.speech_to_text(
        audio,
        file.filename or "audio",
        model=model,
        language_code=(languageCode or "").strip() or None,
        tag_audio_events=tagAudioEvents,
        diarize=diarize,
    )
    transcript = json.dumps(
        {"text": result.text, "languageCode": result.language_code, "words": result.words or []}
    ).encode("utf-8")
    asset = _save_asset(
        session,
        storage,
        current_user,
        MediaKind.transcription,
        transcript,
        "application/json",
        text=result.text,
        model=result.model,
    )
    schedule_usage_tracking(background_tasks, current_user.id, UsageCategory.audio)
    return _asset_response(
        asset,
        text=result.text,
        languageCode=result.language_code,
        remainingQuota=remaining,
    )


@router.post("/voice-change")
async def change_voice(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    voiceId: str = Form(...),
    model: str = Form(STS_MODELS[0]),
    removeBackgroundNoise: bool = Form(False),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    eleven: ElevenLabsService = Depends(get_elevenlabs_service),
    storage: StorageService = Depends(get_storage_service),
):
    if not voiceId.strip():
        raise _bad_request("Voice is required")
    if model not in STS_MODELS:
        raise _bad_request("Invalid model selected")
    audio = await _read_upload(file)

    remaining = check_usage_limit(session, current_user.id, UsageCategory.audio)
    result = eleven.speech_to_speech(
        audio,
        file.filename or "audio",
        voiceId.strip(),
        model=model,
        remove_background_noise=removeBackgroundNoise,
    )
    asset = _save_asset(
        session,
        storage,
        current_user,
        MediaKind.voice_change,
        result.audio,
        result.mime_type,
        model=result.model,
        voice_id=voiceId.strip(),
    )
    schedule_usage_tracking(background_tasks, current_user.id, UsageCategory.audio)
    return _asset_response(asset, remainingQuota=remaining)


@router.post("/music")
def compose_music(
    req: MusicRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    eleven: ElevenLabsService = Depends(get_elevenlabs_service),
    storage: StorageService = Depends(get_storage_service),
):
    prompt = (req.prompt or "").strip()
    if not prompt:
        raise _bad_request("Prompt is required")
    if req.model not in MUSIC_MODELS:
        raise _bad_request("Invalid model selected")
    low, high = MUSIC_LENGTH_RANGE_MS
    if req.musicLengthMs is not None and not low <= req.musicLengthMs <= high:
        raise _bad_request("Music length must be between 10 seconds and 5 minutes")

    remaining = check_usage_limit(session, current_user.id, UsageCategory.audio)
    result = eleven.compose_music(
        prompt,
        music_length_ms=req.musicLengthMs,
        model=req.model,
        force_instrumental=req.forceInstrumental,
    )
    asset = _save_asset(
        session,
        storage,
        current_user,
        MediaKind.music,
        result.audio,
        result.mime_type,
        text=prompt,
        model=result.model,
        duration=req.musicLengthMs / 1000.0 if req.musicLengthMs else None,
    )
    schedule_usage_tracking(background_tasks, current_user.id, UsageCategory.audio)
    return _asset_response(asset, remainingQuota=remaining)


@router.post("/sound-effects")
def generate_sound_effect(
    req: SoundEffectRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    eleven: ElevenLabsService = Depends(get_elevenlabs_service),
    storage: StorageService = Depends(get_storage_service),
):
    text = (req.text or "").strip()
    if not text:
        raise _bad_request("Description is required")
    low, high = SOUND_DURATION_RANGE
    if req.durationSeconds is not None and not low <= req.durationSeconds <= high:
        raise _bad_request(f"Duration must be between {low} and {high} seconds")
    if not 0.0 <= req.promptInfluence <= 1.0:
        raise _bad_request("Prompt influence must be between 0 and 1")

    remaining = check_usage_limit(session, current_user.id, UsageCategory.audio)
    result = eleven.sound_effect(text, duration_seconds=req.durationSeconds, prompt_influence=req.promptInfluence)
    asset = _save_asset(
        session,
        storage,
        current_user,
        MediaKind.sound_effect,
        result.audio,
        result.mime_type,
        text=text,
        model=result.model,
        duration=req.durationSeconds,
    )
    schedule_usage_tracking(background_tasks, current_user.id, UsageCategory.audio)
    return _asset_response(asset, remainingQuota=remaining)


@router.get("/voices")
def list_voices(current_user: User = Depends(get_current_user)):
    return [{"voiceId": voice_id, "name": name} for voice_id, name in VOICES.items()]
