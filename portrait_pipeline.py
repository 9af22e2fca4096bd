"""
Portrait generation pipeline

Every generation mode is an ordered list of named stages. A stage takes the
current artifact plus the generation parameters and returns a new artifact;
the first failing stage ends the run.
"""

import base64
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional


import config
from image_utils import composite_onto_scene, detect_image_mime_type, download_image_from_url
from prompts import DEFAULT_PET_DESCRIPTION, ROYAL_SCENE_PROMPT, VISION_ANALYSIS_PROMPT, build_harmonize_prompt
from security_utils import sanitize_pet_description

logger = logging.getLogger(__name__)


class GenerationMode(str, Enum):
    OPENAI_IMG2IMG = "openai_img2img"
    COMPOSITE = "composite"
    FLUX = "flux"


class StageName(str, Enum):
    IMG2IMG = "img2img"
    FLUX = "flux"
    SEGMENTATION = "segmentation"
    SCENE_GENERATION = "scene_generation"
    COMPOSITE = "composite"
    HARMONIZATION = "harmonization"


@dataclass(frozen=True)
class GenerationParams:
    prompt: str
    species: str = "PET"
    style: str = config.STYLE_ROYAL
    gender: Optional[str] = None
    pet_name: Optional[str] = None


@dataclass(frozen=True)
class PortraitArtifact:
    source: bytes
    image: Optional[bytes] = None
    subject: Optional[bytes] = None  # pet with background removed
    scene: Optional[bytes] = None    # empty royal scene


StageFunc = Callable[[PortraitArtifact, GenerationParams], PortraitArtifact]


@dataclass(frozen=True)
class PipelineStage:
    name: StageName
    run: StageFunc


class PipelineError(Exception):
    """Raised when a pipeline stage fails"""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message


def run_pipeline(stages: List[PipelineStage], artifact: PortraitArtifact, params: GenerationParams) -> PortraitArtifact:
    """Run stages in order and return the final artifact"""
    total = len(stages)
    for index, stage in enumerate(stages, start=1):
        logger.info(f"Step {index}/{total}: {stage.name.value}...")
        start_time = time.time()
        try:
            artifact = stage.run(artifact, params)
        except PipelineError:
            raise
        except Exception as e:
            logger.error(f"❌ Stage {stage.name.value} failed: {e}")
            raise PipelineError(stage.name.value, str(e)) from e
        logger.info(f"✅ Stage {stage.name.value} completed in {time.time() - start_time:.2f} seconds")

    if not artifact.image:
        raise PipelineError("pipeline", "No image was produced")
    return artifact


def select_generation_mode(
    use_openai_img2img: bool = False,
    use_composite: bool = False,
    use_flux: bool = False,
    replicate_available: bool = False
) -> GenerationMode:
    """
    Pick the generation mode from feature flags.
    Priority: OpenAI img2img > composite > FLUX > default OpenAI img2img.
    Replicate-backed modes need a Replicate token.
    """
    if use_openai_img2img:
        return GenerationMode.OPENAI_IMG2IMG
    if use_composite and replicate_available:
        return GenerationMode.COMPOSITE
    if use_flux and replicate_available:
        return GenerationMode.FLUX
    return GenerationMode.OPENAI_IMG2IMG


def to_data_url(image_data: bytes) -> str:
    mime_type = detect_image_mime_type(image_data)
    return f"data:{mime_type};base64,{base64.b64encode(image_data).decode('utf-8')}"


def image_bytes_from_openai(response) -> bytes:
    """Extract image bytes from an OpenAI images response (base64 or URL)"""
    data = getattr(response, "data", None) or []
    if not data:
        raise PipelineError("openai", "No image generated")

    image_data = data[0]
    if getattr(image_data, "b64_json", None):
        return base64.b64decode(image_data.b64_json)
    if getattr(image_data, "url", None):
        return download_image_from_url(image_data.url)
    raise PipelineError("openai", "No image data in response")


def image_bytes_from_replicate(output) -> bytes:
    """Replicate returns a FileOutput, a URL, or a list of either"""
    if isinstance(output, (list, tuple)):
        if not output:
            raise PipelineError("replicate", "Empty output")
        output = output[0]

    if hasattr(output, "read"):
        return output.read()
    if isinstance(output, str):
        return download_image_from_url(output)
    if hasattr(output, "url"):
        url = output.url() if callable(output.url) else output.url
        return download_image_from_url(str(url))
    raise PipelineError("replicate", f"Unexpected output format: {type(output).__name__}")


class PortraitGenerator:
    """Runs pet analysis and portrait generation against the image vendors"""

    def __init__(self, openai_client, replicate_client=None, enable_harmonization: bool = False):
        self.openai_client = openai_client
        self.replicate_client = replicate_client
        self.enable_harmonization = enable_harmonization

    def analyze_pet(self, image_data: bytes) -> str:
        """
        Describe the pet with the vision model

        Args:
            image_data: JPEG bytes prepared for vision

        Returns:
            Sanitized description starting with a [SPECIES] tag
        """
        logger.info(f"Analyzing pet with {config.OPENAI_VISION_MODEL}...")
        image_base64 = base64.b64encode(image_data).decode('utf-8')

        response = self.openai_client.chat.completions.create(
            model=config.OPENAI_VISION_MODEL,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": VISION_ANALYSIS_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:image/jpeg;base64,{image_base64}",
                                "detail": "high",
                            },
                        },
                    ],
                }
            ],
            max_tokens=2500,
            temperature=0.1,
        )

        raw = ""
        if response.choices:
            raw = response.choices[0].message.content or ""
        description = sanitize_pet_description(raw, config.MAX_DESCRIPTION_LENGTH)
        if len(description) < 10:
            logger.warning("Pet description was too short after sanitization, using fallback")
            description = DEFAULT_PET_DESCRIPTION
        elif len(description) < 100:
            logger.warning("⚠️ Vision description is too short - may lack detail")

        logger.info(f"Pet description length: {len(description)}")
        return description

    def build_stages(self, mode: GenerationMode) -> List[PipelineStage]:
        if mode == GenerationMode.COMPOSITE:
            stages = [
                PipelineStage(StageName.SEGMENTATION, self.segment_pet),
                PipelineStage(StageName.SCENE_GENERATION, self.generate_royal_scene),
                PipelineStage(StageName.COMPOSITE, self.composite_portrait),
            ]
            if self.enable_harmonization:
                stages.append(PipelineStage(StageName.HARMONIZATION, self.harmonize_portrait))
            return stages
        if mode == GenerationMode.FLUX:
            return [PipelineStage(StageName.FLUX, self.flux_img2img)]
        return [PipelineStage(StageName.IMG2IMG, self.openai_img2img)]

    def generate(self, source: bytes, params: GenerationParams, mode: GenerationMode) -> bytes:
        """Run the pipeline for a mode and return the generated portrait bytes"""
        logger.info(f"=== IMAGE GENERATION ({mode.value}) ===")
        artifact = run_pipeline(self.build_stages(mode), PortraitArtifact(source=source), params)
        return artifact.image

    # === Stages ===

    def openai_img2img(self, artifact: PortraitArtifact, params: GenerationParams) -> PortraitArtifact:
        image = artifact.image or artifact.source
        mime_type = detect_image_mime_type(image)
        extension = mime_type.split("/")[-1]
        response = self.openai_client.images.edit(
            model=config.OPENAI_IMAGE_MODEL,
            image=(f"pet-photo.{extension}", image, mime_type),
            prompt=params.prompt,
            n=1,
            size="1024x1024",
        )
        return replace(artifact, image=image_bytes_from_openai(response))

    def flux_img2img(self, artifact: PortraitArtifact, params: GenerationParams) -> PortraitArtifact:
        self._require_replicate()
        logger.info(f"FLUX prompt strength: {config.FLUX_PROMPT_STRENGTH}, guidance: {config.FLUX_GUIDANCE_SCALE}")
        output = self.replicate_client.run(
            config.FLUX_MODEL,
            input={
                "prompt": params.prompt,
                "image": to_data_url(artifact.source),
                "prompt_strength": config.FLUX_PROMPT_STRENGTH,
                "num_inference_steps": 28,
                "guidance_scale": config.FLUX_GUIDANCE_SCALE,
                "output_format": "png",
                "output_quality": 95,
                "safety_tolerance": 5,
                "aspect_ratio": "1:1",
            }
        )
        return replace(artifact, image=image_bytes_from_replicate(output))

    def segment_pet(self, artifact: PortraitArtifact, params: GenerationParams) -> PortraitArtifact:
        self._require_replicate()
        output = self.replicate_client.run(config.REMBG_MODEL, input={"image": to_data_url(artifact.source)})
        return replace(artifact, subject=image_bytes_from_replicate(output))

    def generate_royal_scene(self, artifact: PortraitArtifact, params: GenerationParams) -> PortraitArtifact:
        response = self.openai_client.images.generate(
            model=config.OPENAI_IMAGE_MODEL,
            prompt=ROYAL_SCENE_PROMPT,
            n=1,
            size="1024x1024",
            quality="high",
        )
        return replace(artifact, scene=image_bytes_from_openai(response))

    def composite_portrait(self, artifact: PortraitArtifact, params: GenerationParams) -> PortraitArtifact:
        if not artifact.subject or not artifact.scene:
            raise PipelineError(StageName.COMPOSITE.value, "Segmented pet and scene are both required")
        return replace(artifact, image=composite_onto_scene(artifact.subject, artifact.scene))

    def harmonize_portrait(self, artifact: PortraitArtifact, params: GenerationParams) -> PortraitArtifact:
        response = self.openai_client.images.edit(
            model=config.OPENAI_IMAGE_MODEL,
            image=("composited.png", artifact.image, "image/png"),
            prompt=build_harmonize_prompt(params.species.lower()),
            n=1,
            size="1024x1024",
        )
        return replace(artifact, image=image_bytes_from_openai(response))

    def _require_replicate(self):
        if self.replicate_client is None:
            raise PipelineError("replicate", "REPLICATE_API_TOKEN not configured")
