import base64
import logging

import openai
from openai import OpenAI

from errors import CollaboratorError
from openai_client import translate_openai_error

logger = logging.getLogger(__name__)


class OpenAIImageGenerator:
    """
    Image collaborator: (name, prompt) -> PNG bytes.
    """

    def __init__(self, client: OpenAI, model: str = "gpt-image-1", size: str = "1024x1024", timeout: float = 180.0):
        self.client = client
        self.model = model
        self.size = size
        self.timeout = timeout

    def generate(self, name: str, prompt: str) -> bytes:
        logger.info("Generating image: %s with prompt: %s", name, prompt[:200])
        try:
            resp = self.client.images.generate(
                model=self.model,
                prompt=prompt,
                size=self.size,
                n=1,
                timeout=self.timeout,
            )
        except openai.OpenAIError as e:
            raise translate_openai_error(e, f"Image generation for '{name}'") from e

        if not resp.data or not resp.data[0].b64_json:
            raise CollaboratorError(f"Image generation for '{name}' returned no image data")
        return base64.b64decode(resp.data[0].b64_json)
