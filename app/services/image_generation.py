"""
Client for the external image/text model provider (OpenAI-compatible HTTP API).
Generates coloring book pages and rewrites prompts; never touches balances.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "60"))

IMAGE_MODEL = "gpt-image-1"
RESPONSES_MODEL = "gpt-4.1"
MAX_REFERENCE_IMAGES = 4

DEFAULT_RATIO = "Portrait (tall)"
RATIO_SIZES = {
    "Portrait (tall)": "1024x1536",
    "Square": "1024x1024",
    "Landscape (wide)": "1536x1024",
}
VALID_QUALITIES = ("low", "medium", "high", "auto")

DEFAULT_PRESET = "Coloring Book"
PRESET_PREFIXES = {
    "Coloring Book": (
        "As a child's coloring book artist, draw a simple coloring book sheet. "
        "DO NOT include any text in the image unless explicitly instructed to do so. "
        "DO NOT use any colors other than black and white, never use color. Here is the prompt:"
    ),
    "Photo": (
        "Create a realistic 4k photo with a short range portrait lens that tells a story "
        "and uses bright colors for this prompt:"
    ),
    "Sketches": (
        "Create a figure drawing sketch that serves as a helpful drawing tool for artists. "
        "Use single color (black and white only) with clear lines that show character shapes, "
        "including balls at joints, circles in faces, and motion drawing style. "
        "Focus on the pose and movement described in the prompt. Here is the scene to draw:"
    ),
    "None": "Create an image exactly in the style as prompted:",
}

RATE_LIMIT_MESSAGE = "Rate limit reached. Please try again in a few moments."


class GenerationError(Exception):
    """A generation call failed. message is safe to show to the user."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retryable = retryable

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


@dataclass
class GenerationSettings:
    ratio: str = DEFAULT_RATIO
    quality: str = "low"
    preset: str = DEFAULT_PRESET
    reference_images: List[str] = field(default_factory=list)  # data:image/... URLs

    @property
    def size(self) -> str:
        return RATIO_SIZES.get(self.ratio, RATIO_SIZES[DEFAULT_RATIO])

    @property
    def normalized_quality(self) -> str:
        quality = (self.quality or "").lower()
        return quality if quality in VALID_QUALITIES else "low"

    @property
    def prompt_prefix(self) -> str:
        return PRESET_PREFIXES.get(self.preset, PRESET_PREFIXES[DEFAULT_PRESET])

    @property
    def usable_references(self) -> List[str]:
        refs = [r for r in self.reference_images if r and r.startswith("data:image/")]
        return refs[:MAX_REFERENCE_IMAGES]


@dataclass
class GeneratedImage:
    image_b64: Optional[str] = None
    url: Optional[str] = None
    tokens_used: Optional[int] = None
    revised_prompt: Optional[str] = None

    @property
    def src(self) -> Optional[str]:
        if self.url:
            return self.url
        if self.image_b64:
            return f"data:image/png;base64,{self.image_b64}"
        return None


class ImageGenerationClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = OPENAI_API_KEY if api_key is None else api_key
        self.base_url = (base_url or OPENAI_BASE_URL).rstrip("/")
        self.timeout = GENERATION_TIMEOUT_SECONDS if timeout is None else timeout
        self.transport = transport

    async def _post(self, path: str, payload: Dict[str, Any], default_error: str) -> Dict[str, Any]:
        if not self.api_key:
            raise GenerationError("Image generation is not configured.", 503)

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("[Generation] Timeout calling %s: %s", path, e)
            raise GenerationError(
                "The image service took too long to respond. Please try again.", 504, retryable=True
            )
        except httpx.RequestError as e:
            logger.warning("[Generation] Request error calling %s: %s", path, e)
            raise GenerationError(f"Image service request failed: {e}", 502, retryable=True)

        if r.status_code != 200:
            logger.warning("[Generation] %s returned %s: %s", path, r.status_code, r.text[:500])
            message = default_error
            if r.status_code == 429:
                message = RATE_LIMIT_MESSAGE
            else:
                try:
                    error_message = (r.json().get("error") or {}).get("message")
                    if error_message:
                        message = error_message
                except ValueError:
                    pass
            raise GenerationError(
                message, r.status_code, retryable=r.status_code == 429 or r.status_code >= 500
            )

        try:
            return r.json()
        except ValueError:
            raise GenerationError("Invalid response from image service.", 502)

    async def generate_image(self, prompt: str, settings: Optional[GenerationSettings] = None) -> GeneratedImage:
        """
        Render one page. Reference images switch to the responses endpoint with the
        image_generation tool; otherwise the plain images endpoint is used.
        """
        settings = settings or GenerationSettings()
        prompt = (prompt or "").strip() or "Hello World"
        references = settings.usable_references

        if references:
            content: List[Dict[str, Any]] = [{
                "type": "input_text",
                "text": (
                    f"Please generate an image: {settings.prompt_prefix} {prompt}. "
                    "Use the reference images provided to guide the style and content."
                ),
            }]
            content.extend({"type": "input_image", "image_url": ref} for ref in references)
            payload = {
                "model": RESPONSES_MODEL,
                "input": [{"role": "user", "content": content}],
                "tools": [{
                    "type": "image_generation",
                    "output_format": "png",
                    "quality": settings.normalized_quality,
                    "size": settings.size,
                }],
                "tool_choice": {"type": "image_generation"},
            }
            data = await self._post("/responses", payload, "Failed to generate image")
            image = GeneratedImage(tokens_used=_total_tokens(data))
            for output in data.get("output") or []:
                if output.get("type") == "image_generation_call" and output.get("result"):
                    image.image_b64 = output["result"]
                    break
        else:
            payload = {
                "model": IMAGE_MODEL,
                "size": settings.size,
                "quality": settings.normalized_quality,
                "output_format": "png",
                "prompt": f"{settings.prompt_prefix} {prompt}.",
            }
            data = await self._post("/images/generations", payload, "Failed to generate image")
            image = GeneratedImage(tokens_used=_total_tokens(data))
            first = (data.get("data") or [{}])[0]
            image.image_b64 = first.get("b64_json")
            image.url = first.get("url")
            image.revised_prompt = first.get("revised_prompt")

        if image.src is None:
            raise GenerationError("No image data received from API", 502)
        logger.info(
            "[Generation] Image ready (refs=%s, size=%s, tokens=%s)",
            len(references), settings.size, image.tokens_used,
        )
        return image

    async def improve_prompt(self, base_prompt: str) -> str:
        """Ask the text model for a richer coloring book prompt."""
        base_prompt = (base_prompt or "").strip() or "Hello World"
        payload = {
            "model": RESPONSES_MODEL,
            "input": (
                f"Create a creative coloring book prompt based on this idea: {base_prompt}. "
                "Return ONLY the prompt text, no formatting, no additional language or instructions."
            ),
        }
        data = await self._post("/responses", payload, "Failed to improve prompt")
        for output in data.get("output") or []:
            for part in output.get("content") or []:
                text = part.get("text")
                if text:
                    return text.strip()
        raise GenerationError("No response text received from API", 502)


def _total_tokens(data: Dict[str, Any]) -> Optional[int]:
    usage = data.get("usage") or {}
    total = usage.get("total_tokens")
    return int(total) if isinstance(total, (int, float)) else None
