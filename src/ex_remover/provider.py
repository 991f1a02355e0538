"""Vision/edit adapters: identify a person, verify presence, remove them."""

import base64
import logging
import os
from typing import Any, Protocol

import openai
from dotenv import load_dotenv
from openai import AsyncOpenAI

from ex_remover.errors import AdapterError
from ex_remover.prepare import prepare_image, prepare_upload, scale_point
from ex_remover.records import Point

logger = logging.getLogger(__name__)

DEFAULT_VISION_MODEL = "gpt-4o-mini"
DEFAULT_EDIT_MODEL = "gpt-image-1"
DEFAULT_TIMEOUT = 120.0

BILLING_HELP_URL = "https://platform.openai.com/account/billing"

IDENTIFY_PROMPT = (
    "Analyze the person nearest to coordinates (x={x}, y={y}). Provide a "
    "description focusing ONLY on permanent facial features and head "
    "structure. Describe their face shape, eye color and shape, nose, mouth, "
    "and any unique, permanent facial markings. CRUCIALLY, DO NOT mention "
    "clothing, glasses, hats, or any temporary items. The description must be "
    "robust enough to identify the same person even if they change their "
    'outfit. For example: "Person with an oval face, high cheekbones, thin '
    'lips, and almond-shaped blue eyes."'
)

VERIFY_PROMPT = (
    'Analyze the image. A person is described by their facial features as: "{description}". '
    "Is this specific person present in the image? "
    'Please answer with only the word "true" or "false".'
)

REMOVAL_PROMPT = (
    "The target for removal is defined by the following detailed facial and "
    'head structure description: "{description}". Completely remove this '
    "person and inpaint the area they occupied. Reconstruct the background "
    "with photorealistic detail, matching the lighting, textures, and "
    "perspective of the surrounding area. The final image must be free of any "
    "artifacts, distortions, or remnants of the removed person, appearing as "
    "if they were never there."
)


class VisionEditAdapter(Protocol):
    """Provider capabilities consumed by the pipeline.

    Every method raises AdapterError on failure.
    """

    async def identify(self, image: bytes, mime_type: str, point: Point) -> str: ...

    async def verify(self, image: bytes, mime_type: str, description: str) -> bool: ...

    async def edit(self, image: bytes, mime_type: str, description: str) -> bytes: ...


def build_removal_prompt(description: str) -> str:
    return REMOVAL_PROMPT.format(description=description)


def parse_verification(text: str | None) -> bool:
    """Read a strict true/false verification reply.

    Raises:
        AdapterError: If the reply is anything other than true or false
    """
    normalized = (text or "").strip().strip(".\"'`").strip().lower()
    if normalized not in {"true", "false"}:
        raise AdapterError(
            "Unexpected response from AI when verifying person's presence. "
            f'Got: "{text}". Expected "true" or "false".'
        )
    return normalized == "true"


def handle_api_error(error: Exception, context: str) -> AdapterError:
    """Normalize a provider exception into an AdapterError.

    Billing and quota refusals get a message that says so and links to the
    provider billing page.
    """
    if isinstance(error, AdapterError):
        return error

    logger.error(f"Error during {context}: {error}")
    message = str(error)
    code = getattr(error, "code", None)
    lowered = message.lower()

    if (
        code in {"insufficient_quota", "billing_hard_limit_reached"}
        or "quota" in lowered
        or "billing" in lowered
        or "resource_exhausted" in lowered
    ):
        return AdapterError(
            "The service has exceeded its usage quota. To continue, billing "
            f"must be enabled on the provider account. For more info, visit: {BILLING_HELP_URL}",
            code="quota",
        )

    return AdapterError(f"API error during {context}: {message}", code=code)


def _extract_text(response: Any) -> str | None:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return None
    content = choices[0].message.content
    if isinstance(content, str):
        return content
    return None


class OpenAIVisionEditAdapter:
    """Adapter backed by the OpenAI chat (vision) and images edit APIs."""

    def __init__(
        self,
        api_key: str | None = None,
        vision_model: str = DEFAULT_VISION_MODEL,
        edit_model: str = DEFAULT_EDIT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        client: Any | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            vision_model: Model used for identification and verification
            edit_model: Model used for removal
            timeout: Per-request timeout in seconds
            client: Pre-built async client (skips key lookup)

        Raises:
            ValueError: If API key is not provided or found in environment
        """
        if client is None:
            load_dotenv()
            if api_key is None:
                api_key = os.environ.get("OPENAI_API_KEY")

            if not api_key:
                raise ValueError(
                    "API key required. Set OPENAI_API_KEY environment variable "
                    "or pass api_key parameter."
                )
            client = AsyncOpenAI(api_key=api_key, timeout=timeout)

        self.client = client
        self.vision_model = vision_model
        self.edit_model = edit_model
        logger.info(
            f"OpenAI adapter initialized (vision={vision_model}, edit={edit_model})"
        )

    async def _ask(self, prompt: str, data_url: str) -> str | None:
        response = await self.client.chat.completions.create(
            model=self.vision_model,
            temperature=0,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": data_url}},
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
        )
        return _extract_text(response)

    async def identify(self, image: bytes, mime_type: str, point: Point) -> str:
        try:
            prepared = prepare_image(image, mime_type)
            scaled = scale_point(point, prepared.scale)
            logger.debug(f"Identifying person near {point} (sent as {scaled})")

            text = await self._ask(
                IDENTIFY_PROMPT.format(x=scaled.x, y=scaled.y), prepared.data_url
            )
        except (openai.OpenAIError, ValueError) as e:
            raise handle_api_error(e, "identification") from e

        description = (text or "").strip()
        if not description:
            raise AdapterError("The provider did not return a description.")
        return description

    async def verify(self, image: bytes, mime_type: str, description: str) -> bool:
        try:
            prepared = prepare_image(image, mime_type)
            text = await self._ask(
                VERIFY_PROMPT.format(description=description), prepared.data_url
            )
        except (openai.OpenAIError, ValueError) as e:
            raise handle_api_error(e, "person verification") from e

        present = parse_verification(text)
        logger.debug(f"Verification reply: {present}")
        return present

    async def edit(self, image: bytes, mime_type: str, description: str) -> bytes:
        try:
            upload = prepare_upload(image, mime_type, "photo")
            response = await self.client.images.edit(
                model=self.edit_model,
                image=upload,
                prompt=build_removal_prompt(description),
            )
        except (openai.OpenAIError, ValueError) as e:
            raise handle_api_error(e, "image editing") from e

        for item in getattr(response, "data", None) or []:
            payload = getattr(item, "b64_json", None)
            if payload:
                return base64.b64decode(payload)

        raise AdapterError("The provider did not return an edited image.")
