"""
Gemini / Veo generation collaborators.

Thin REST wrappers over the Generative Language API:
- GeminiImageGenerator: scene frames (generateContent with inline references)
- GeminiNarrationGenerator: text-to-speech narration
- GeminiVideoGenerator: first/last-frame clips (predictLongRunning + polling)

Vendor failures are translated into the typed taxonomy at this boundary:
HTTP 429 -> RateLimitedError, HTTP 403 -> ForbiddenError, anything else ->
GenerationError.
"""

import asyncio
import base64
import io
import re
import wave
from typing import Any, Dict, List, Optional, Tuple

import httpx

from storyweaver.core.config import GeminiConfig
from storyweaver.core.env_loader import get_gemini_api_key
from storyweaver.core.exceptions import (
    ConfigurationError,
    ForbiddenError,
    GenerationError,
    GenerationErrorKind,
    RateLimitedError,
    classify_error,
)
from storyweaver.core.logging_config import get_logger
from storyweaver.generation.base import (
    ImageGenerator,
    NarrationGenerator,
    NarrationRequest,
    SceneImageRequest,
    VideoClipRequest,
    VideoGenerator,
)

logger = get_logger("generation.gemini")

API_ROOT = "https://generativelanguage.googleapis.com/v1beta"
PROVIDER = "gemini"

DATA_URI_PATTERN = re.compile(r"^data:([^;,]+)(?:;[^,]*)?;base64,(.+)$", re.DOTALL)


def split_data_uri(value: str) -> Optional[Tuple[str, str]]:
    """Return (mime_type, base64_data) for a data URI, or None."""
    match = DATA_URI_PATTERN.match(value)
    if not match:
        return None
    return match.group(1), match.group(2)


def to_data_uri(mime_type: str, data_b64: str) -> str:
    return f"data:{mime_type};base64,{data_b64}"


def pcm_to_wav(pcm: bytes, sample_rate: int = 24000, channels: int = 1, sample_width: int = 2) -> bytes:
    """Wrap raw 16-bit PCM (what the TTS model returns) in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


class GeminiClient:
    """
    Shared transport for the Gemini collaborators.

    Args:
        api_key: Gemini API key (defaults to GEMINI_API_KEY / GOOGLE_API_KEY)
        config: Model names, timeout and polling interval
        http_client: Optional pre-built httpx.AsyncClient (tests pass one with
            a MockTransport)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[GeminiConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or get_gemini_api_key()
        if not self.api_key:
            raise ConfigurationError("GEMINI_API_KEY is not set")
        self.config = config or GeminiConfig()
        self._http = http_client or httpx.AsyncClient(timeout=self.config.timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> 'GeminiClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "x-goog-api-key": self.api_key}

    async def post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", f"{API_ROOT}/{path}", json=body)

    async def get(self, path: str) -> Dict[str, Any]:
        return await self._request("GET", f"{API_ROOT}/{path}")

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._http.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise GenerationError(f"Network error calling Gemini: {e}", provider=PROVIDER)

        self._raise_for_status(response)
        try:
            return response.json()
        except ValueError:
            raise GenerationError("Gemini returned a non-JSON response", provider=PROVIDER,
                                  status_code=response.status_code)

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code < 400:
            return

        try:
            payload = response.json()
            message = payload.get("error", {}).get("message") or response.text
            status = payload.get("error", {}).get("status", "")
        except ValueError:
            message, status = response.text, ""

        detail = f"Gemini HTTP {response.status_code} {status}: {message}".strip()
        raise_for_code(response.status_code, detail)

    async def fetch_bytes(self, url: str, authenticated: bool = False) -> Tuple[bytes, str]:
        """Download a file; returns (content, mime_type)."""
        headers = {"x-goog-api-key": self.api_key} if authenticated else {}
        try:
            response = await self._http.get(url, headers=headers, follow_redirects=True)
        except httpx.HTTPError as e:
            raise GenerationError(f"Failed to fetch {url}: {e}", provider=PROVIDER)
        if response.status_code >= 400:
            raise_for_code(response.status_code, f"Failed to fetch {url}: HTTP {response.status_code}")
        mime_type = response.headers.get("content-type", "application/octet-stream").split(";")[0]
        return response.content, mime_type

    async def inline_image(self, image: str) -> Tuple[str, str]:
        """Resolve a data URI, URL or bare base64 string to (mime_type, base64)."""
        parsed = split_data_uri(image)
        if parsed:
            return parsed
        if image.startswith(("http://", "https://")):
            content, mime_type = await self.fetch_bytes(image)
            if not mime_type.startswith("image/"):
                mime_type = "image/png"
            return mime_type, base64.b64encode(content).decode("ascii")
        return "image/png", image


def raise_for_code(status_code: int, message: str) -> None:
    """Raise the typed GenerationError for an HTTP or operation error code."""
    if status_code == 429:
        raise RateLimitedError(message, provider=PROVIDER, status_code=status_code)
    if status_code == 403:
        raise ForbiddenError(message, provider=PROVIDER, status_code=status_code)

    kind = classify_error(Exception(message))
    if kind is GenerationErrorKind.RATE_LIMITED:
        raise RateLimitedError(message, provider=PROVIDER, status_code=status_code)
    if kind is GenerationErrorKind.FORBIDDEN:
        raise ForbiddenError(message, provider=PROVIDER, status_code=status_code)
    raise GenerationError(message, provider=PROVIDER, status_code=status_code)


def first_inline_data(payload: Dict[str, Any]) -> Optional[Dict[str, str]]:
    """First inlineData part of the first candidate, if any."""
    for candidate in payload.get("candidates", [])[:1]:
        for part in candidate.get("content", {}).get("parts", []):
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return inline
    return None


# =============================================================================
# IMAGE
# =============================================================================

class GeminiImageGenerator(ImageGenerator):
    """Scene frames via the Gemini image model."""

    def __init__(self, client: GeminiClient):
        self.client = client

    def build_prompt(self, request: SceneImageRequest) -> str:
        if request.scene_index == 0:
            continuity = "This is the establishing shot. Define the environment clearly."
        else:
            continuity = "Continue from the scene images above: same location, lighting and world."

        return (
            f"Generate scene {request.scene_index + 1} of {request.total_scenes}. "
            f"Style: {request.style}.\n\n"
            f"CHARACTER DNA:\n{request.character_dna}\n\n"
            f"SCENE DESCRIPTION:\n{request.scene_description}\n\n"
            f"RULES:\n"
            f"- Characters must match the reference images exactly.\n"
            f"- {continuity}"
        )

    async def _image_parts(self, label: str, images: List[str]) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = []
        for image in images:
            mime_type, data = await self.client.inline_image(image)
            parts.append({"inline_data": {"mime_type": mime_type, "data": data}})
        return [{"text": label}] + parts if parts else []

    async def generate_scene_image(self, request: SceneImageRequest) -> str:
        parts: List[Dict[str, Any]] = []
        parts += await self._image_parts(
            "CHARACTER REFERENCES - keep faces, bodies and clothing identical:",
            request.character_images,
        )
        if request.scene_index > 0 and request.establishing_frame:
            parts += await self._image_parts(
                "ESTABLISHING SHOT - base reference for world, art style and palette:",
                [request.establishing_frame],
            )
        if request.scene_index > 0 and request.previous_frame:
            parts += await self._image_parts(
                f"PREVIOUS SCENE (scene {request.scene_index}) - continue directly from here:",
                [request.previous_frame],
            )
        parts.append({"text": self.build_prompt(request)})

        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": request.aspect_ratio},
            },
        }
        model = self.client.config.image_model
        payload = await self.client.post(f"models/{model}:generateContent", body)

        inline = first_inline_data(payload)
        if not inline:
            raise GenerationError("No image in Gemini response", provider=PROVIDER)
        return to_data_uri(inline.get("mimeType") or inline.get("mime_type") or "image/png", inline["data"])


# =============================================================================
# NARRATION
# =============================================================================

class GeminiNarrationGenerator(NarrationGenerator):
    """Narration via the Gemini TTS model, returned as a WAV data URI."""

    RATE_PATTERN = re.compile(r"rate=(\d+)")

    def __init__(self, client: GeminiClient):
        self.client = client

    async def generate_narration(self, request: NarrationRequest) -> str:
        body = {
            "contents": [{"parts": [{"text": request.text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": request.voice}}
                },
            },
        }
        model = self.client.config.tts_model
        payload = await self.client.post(f"models/{model}:generateContent", body)

        inline = first_inline_data(payload)
        if not inline:
            raise GenerationError("No audio in Gemini response", provider=PROVIDER)

        mime_type = inline.get("mimeType") or inline.get("mime_type") or ""
        if "wav" in mime_type:
            return to_data_uri("audio/wav", inline["data"])

        rate_match = self.RATE_PATTERN.search(mime_type)
        sample_rate = int(rate_match.group(1)) if rate_match else 24000
        wav = pcm_to_wav(base64.b64decode(inline["data"]), sample_rate=sample_rate)
        return to_data_uri("audio/wav", base64.b64encode(wav).decode("ascii"))


# =============================================================================
# VIDEO
# =============================================================================

class GeminiVideoGenerator(VideoGenerator):
    """First/last-frame clips via Veo, polled until the operation is done."""

    def __init__(self, client: GeminiClient, sleep=asyncio.sleep):
        self.client = client
        self._sleep = sleep

    async def generate_clip(self, request: VideoClipRequest) -> str:
        start_mime, start_data = await self.client.inline_image(request.start_frame)
        end_mime, end_data = await self.client.inline_image(request.end_frame)

        instance: Dict[str, Any] = {
            "image": {"bytesBase64Encoded": start_data, "mimeType": start_mime},
            "lastFrame": {"bytesBase64Encoded": end_data, "mimeType": end_mime},
        }
        if request.motion:
            instance["prompt"] = f"Camera motion: {request.motion}"

        body = {
            "instances": [instance],
            "parameters": {"aspectRatio": request.aspect_ratio, "resolution": "720p"},
        }
        model = self.client.config.video_model
        operation = await self.client.post(f"models/{model}:predictLongRunning", body)

        name = operation.get("name")
        if not name:
            raise GenerationError("Veo did not return an operation name", provider=PROVIDER)

        while not operation.get("done"):
            await self._sleep(self.client.config.poll_interval)
            operation = await self.client.get(name)
            logger.debug(f"Polled video operation {name}: done={operation.get('done', False)}")

        if operation.get("error"):
            error = operation["error"]
            raise_for_code(int(error.get("code", 500)), f"Video generation failed: {error.get('message', '')}")

        samples = (
            operation.get("response", {})
            .get("generateVideoResponse", {})
            .get("generatedSamples", [])
        )
        uri = samples[0].get("video", {}).get("uri") if samples else None
        if not uri:
            raise GenerationError("Video generation returned no clip", provider=PROVIDER)

        content, mime_type = await self.client.fetch_bytes(uri, authenticated=True)
        if not mime_type.startswith("video/"):
            mime_type = "video/mp4"
        return to_data_uri(mime_type, base64.b64encode(content).decode("ascii"))


def create_gemini_generators(
    config: Optional[GeminiConfig] = None,
    api_key: Optional[str] = None,
) -> Tuple[GeminiClient, GeminiImageGenerator, GeminiNarrationGenerator, GeminiVideoGenerator]:
    """Build the three collaborators over one shared client."""
    client = GeminiClient(api_key=api_key, config=config)
    return (
        client,
        GeminiImageGenerator(client),
        GeminiNarrationGenerator(client),
        GeminiVideoGenerator(client),
    )
