"""
Unit tests for prompts and the staged generation pipeline
"""

import base64
from io import BytesIO
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from PIL import Image as PILImage

from portrait_pipeline import (
    GenerationMode,
    GenerationParams,
    PipelineError,
    PipelineStage,
    PortraitArtifact,
    PortraitGenerator,
    StageName,
    image_bytes_from_replicate,
    run_pipeline,
    select_generation_mode,
)
from prompts import DEFAULT_PET_DESCRIPTION, build_generation_prompt, extract_age, extract_species


def png_bytes(size=(64, 64), color=(200, 100, 50), mode="RGB"):
    buffer = BytesIO()
    PILImage.new(mode, size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def openai_image_response(data):
    return SimpleNamespace(data=[SimpleNamespace(b64_json=base64.b64encode(data).decode(), url=None)])


def chat_response(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class TestPrompts:
    def test_extract_species_and_age(self):
        description = "[CAT] AGE: KITTEN. BREED: Siamese"
        assert extract_species(description) == "CAT"
        assert extract_age(description) == "KITTEN"
        assert extract_species("no tag") == "PET"
        assert extract_age("no age") is None

    def test_royal_prompt(self):
        prompt, species = build_generation_prompt("royal", "[DOG] brown beagle", "male")
        assert species == "DOG"
        assert "This is a DOG" in prompt
        assert "FEMININE" not in prompt

    def test_feminine_and_white_cat_treatment(self):
        prompt, _ = build_generation_prompt("royal", "[CAT] pure white fluffy cat", "female")
        assert "FEMININE AESTHETIC" in prompt
        assert "WHITE CAT" in prompt

    def test_rainbow_bridge_prompt(self):
        prompt, _ = build_generation_prompt("rainbow-bridge", "[DOG] black labrador")
        assert "RAINBOW BRIDGE" in prompt


class TestModeSelection:
    def test_priority(self):
        assert select_generation_mode(True, True, True, True) == GenerationMode.OPENAI_IMG2IMG
        assert select_generation_mode(False, True, True, True) == GenerationMode.COMPOSITE
        assert select_generation_mode(False, False, True, True) == GenerationMode.FLUX
        assert select_generation_mode() == GenerationMode.OPENAI_IMG2IMG

    def test_replicate_modes_need_token(self):
        assert select_generation_mode(False, True, True, False) == GenerationMode.OPENAI_IMG2IMG


class TestRunPipeline:
    def test_stages_run_in_order(self):
        order = []

        def stage(name, image=None):
            def run(artifact, params):
                order.append(name)
                return PortraitArtifact(source=artifact.source, image=image or artifact.image)
            return run

        stages = [
            PipelineStage(StageName.SEGMENTATION, stage("a")),
            PipelineStage(StageName.COMPOSITE, stage("b", image=b"final")),
        ]
        result = run_pipeline(stages, PortraitArtifact(source=b"src"), GenerationParams(prompt="p"))

        assert order == ["a", "b"]
        assert result.image == b"final"

    def test_failing_stage_stops_run(self):
        later = Mock()

        def boom(artifact, params):
            raise RuntimeError("vendor down")

        stages = [
            PipelineStage(StageName.IMG2IMG, boom),
            PipelineStage(StageName.HARMONIZATION, later),
        ]
        with pytest.raises(PipelineError) as exc_info:
            run_pipeline(stages, PortraitArtifact(source=b"src"), GenerationParams(prompt="p"))

        assert exc_info.value.stage == "img2img"
        later.assert_not_called()

    def test_pipeline_without_image_fails(self):
        stages = [PipelineStage(StageName.SEGMENTATION, lambda artifact, params: artifact)]
        with pytest.raises(PipelineError):
            run_pipeline(stages, PortraitArtifact(source=b"src"), GenerationParams(prompt="p"))


class TestPortraitGenerator:
    def test_analyze_pet_sanitizes_description(self):
        openai_client = Mock()
        openai_client.chat.completions.create.return_value = chat_response(
            "[DOG] 🐕 AGE: ADULT.\n BREED: Beagle " + "detail " * 30
        )
        description = PortraitGenerator(openai_client).analyze_pet(b"jpeg")
        assert description.startswith("[DOG] AGE: ADULT. BREED: Beagle")
        assert "🐕" not in description

    def test_analyze_pet_falls_back_on_empty(self):
        openai_client = Mock()
        openai_client.chat.completions.create.return_value = chat_response("")
        assert PortraitGenerator(openai_client).analyze_pet(b"jpeg") == DEFAULT_PET_DESCRIPTION

    def test_openai_img2img(self):
        portrait = png_bytes(color=(1, 2, 3))
        openai_client = Mock()
        openai_client.images.edit.return_value = openai_image_response(portrait)

        result = PortraitGenerator(openai_client).generate(
            png_bytes(), GenerationParams(prompt="royal"), GenerationMode.OPENAI_IMG2IMG
        )

        assert result == portrait
        kwargs = openai_client.images.edit.call_args[1]
        assert kwargs["model"] == "gpt-image-1"
        assert kwargs["prompt"] == "royal"
        assert kwargs["image"][2] == "image/png"

    def test_composite_mode(self):
        openai_client = Mock()
        openai_client.images.generate.return_value = openai_image_response(png_bytes((200, 200), (0, 0, 255)))
        replicate_client = Mock()
        replicate_client.run.return_value = SimpleNamespace(read=lambda: png_bytes((50, 100), (255, 0, 0, 255), "RGBA"))

        generator = PortraitGenerator(openai_client, replicate_client=replicate_client)
        result = generator.generate(png_bytes(), GenerationParams(prompt="royal", species="DOG"), GenerationMode.COMPOSITE)

        assert PILImage.open(BytesIO(result)).size == (200, 200)
        openai_client.images.edit.assert_not_called()

    def test_composite_with_harmonization(self):
        harmonized = png_bytes(color=(9, 9, 9))
        openai_client = Mock()
        openai_client.images.generate.return_value = openai_image_response(png_bytes((200, 200)))
        openai_client.images.edit.return_value = openai_image_response(harmonized)
        replicate_client = Mock()
        replicate_client.run.return_value = SimpleNamespace(read=lambda: png_bytes((50, 50), (255, 0, 0, 255), "RGBA"))

        generator = PortraitGenerator(openai_client, replicate_client=replicate_client, enable_harmonization=True)
        result = generator.generate(png_bytes(), GenerationParams(prompt="royal", species="CAT"), GenerationMode.COMPOSITE)

        assert result == harmonized
        assert "cat" in openai_client.images.edit.call_args[1]["prompt"]

    def test_flux_without_replicate_fails(self):
        generator = PortraitGenerator(Mock())
        with pytest.raises(PipelineError):
            generator.generate(png_bytes(), GenerationParams(prompt="royal"), GenerationMode.FLUX)


class TestReplicateOutput:
    def test_file_output(self):
        assert image_bytes_from_replicate(SimpleNamespace(read=lambda: b"data")) == b"data"

    def test_list_output(self):
        assert image_bytes_from_replicate([SimpleNamespace(read=lambda: b"first")]) == b"first"

    def test_empty_list(self):
        with pytest.raises(PipelineError):
            image_bytes_from_replicate([])
