"""Florence-2 inference engine.

``Florence2Model`` wraps a Hugging Face Florence-2 checkpoint and exposes the two-step
interface the batch runner expects:

- ``prepare(image)`` runs the image processor once and returns reusable vision inputs;
- ``infer(prepared, task, text)`` builds the task prompt, generates greedily and returns the
  post-processed payload for ``task`` (a caption string, or a mapping with ``labels`` and
  ``bboxes``/``quad_boxes`` for the region tasks).
"""

from __future__ import annotations

import os
from typing import Any, NamedTuple

import torch  # type: ignore
from dotenv import load_dotenv
from PIL import Image
from transformers import AutoModelForCausalLM, AutoProcessor  # type: ignore

from .logging import get_logger
from .schemas import TASKS_WITH_INPUTS

logger = get_logger(__name__)

load_dotenv()

__all__ = ["Florence2Model", "VisionInputs", "FLORENCE_MODEL", "build_prompt"]

FLORENCE_MODEL = os.environ.get("FLORENCE_BATCH_MODEL", "microsoft/Florence-2-base-ft")


class VisionInputs(NamedTuple):
    pixel_values: Any
    image_size: tuple[int, int]


def build_prompt(task: str, text: str | None = None) -> str:
    if task in TASKS_WITH_INPUTS and text:
        return task + text
    return task


def _resolve_device(device: str) -> str:
    if device != "auto":
        return device
    if torch.cuda.is_available():  # pragma: no cover - device availability
        return "cuda"
    if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():  # pragma: no cover
        return "mps"
    return "cpu"


class Florence2Model:
    """Florence-2 wrapper.

    Parameters
    ----------
    model_id : str | None
        Hugging Face model id. Falls back to ``FLORENCE_BATCH_MODEL``.
    device : str
        'auto' chooses CUDA→MPS→CPU; otherwise explicit device string.
    max_new_tokens : int
        Generation budget per call.
    """

    def __init__(
        self,
        model_id: str | None = FLORENCE_MODEL,
        device: str = "auto",
        max_new_tokens: int = 128,
    ) -> None:
        self.device = _resolve_device(device)
        self.dtype = torch.float16 if self.device == "cuda" else torch.float32
        mid = model_id or FLORENCE_MODEL
        self.processor = AutoProcessor.from_pretrained(mid, trust_remote_code=True)
        self.model = AutoModelForCausalLM.from_pretrained(
            mid, torch_dtype=self.dtype, trust_remote_code=True
        ).to(self.device)
        self.model.eval()
        self.max_new_tokens = max_new_tokens
        logger.info(f"loaded Florence-2 model '{mid}' on device '{self.device}'")

    def prepare(self, image: Image.Image) -> VisionInputs:
        pixel_values = self.processor.image_processor(image, return_tensors="pt")["pixel_values"]
        return VisionInputs(
            pixel_values=pixel_values.to(self.device, self.dtype),
            image_size=(image.width, image.height),
        )

    def infer(self, prepared: VisionInputs, task: str, text: str | None = None) -> Any:
        prompt = build_prompt(task, text)
        prompts = self.processor._construct_prompts([prompt])
        text_inputs = self.processor.tokenizer(prompts, return_tensors="pt").to(self.device)
        with torch.no_grad():  # pragma: no cover - inference
            generated_ids = self.model.generate(
                input_ids=text_inputs["input_ids"],
                pixel_values=prepared.pixel_values,
                max_new_tokens=self.max_new_tokens,
                num_beams=1,
                do_sample=False,
            )
        generated_text = self.processor.batch_decode(generated_ids, skip_special_tokens=False)[0]
        parsed = self.processor.post_process_generation(
            generated_text, task=task, image_size=prepared.image_size
        )
        return parsed.get(task)
