"""
Prompt library for pet analysis and portrait generation
"""

import re
from typing import Optional, Tuple

DEFAULT_PET_DESCRIPTION = "a beloved pet with distinctive features"

SPECIES_PATTERN = re.compile(r'\[(DOG|CAT|RABBIT|BIRD|HAMSTER|GUINEA PIG|FERRET|HORSE|PET)\]', re.IGNORECASE)
AGE_PATTERN = re.compile(r'AGE:\s*(PUPPY|KITTEN|ADULT)', re.IGNORECASE)

VISION_ANALYSIS_PROMPT = """CRITICAL FIRST STEP: Identify the SPECIES. Start your response with EXACTLY one of these: [CAT] or [DOG] or [RABBIT]

SPECIES IDENTIFICATION RULES (MUST BE ACCURATE):
- DOG: prominent snout/muzzle, canine facial structure, larger nose, wider head
- CAT: whiskers, small triangular nose, compact face, feline eye shape
- RABBIT: long ears, round body, no dog-like snout

=== BREED ===
State the breed (or "Mixed breed") with a confidence of HIGH, MEDIUM or LOW.

=== AGE/STAGE ===
PUPPY, KITTEN or ADULT.

=== IDENTITY MARKERS ===
List 10-15 distinctive features that would let the owner RECOGNIZE this specific pet:
asymmetries with exact locations, unique markings and their positions, scars or quirks,
the pet's characteristic expression.

=== FACIAL STRUCTURE ===
Skull type, face width-to-height ratio, snout length and width, eye shape, size, spacing and
precise eye color, nose size, shape and color.

=== EARS ===
Size relative to head, shape, set, carriage, markings.

=== COLORING ===
Base color with exact shade comparisons, secondary colors and their locations, a map of every
marking (location, size, shape, edge definition), pattern type.

=== FUR ===
Length, texture, density, shine, regional variations.

=== EXPRESSION ===
Eye expression, overall demeanor.

Format: "[SPECIES] AGE: [stage]. BREED: [breed] (CONFIDENCE: [level]). IDENTITY MARKERS: [...]. FACIAL STRUCTURE: [...]. EARS: [...]. COLORING: [...]. FUR: [...]. EXPRESSION: [...]."
"""

ROYAL_SCENE_PROMPT = """A luxurious Victorian royal portrait scene with bright vibrant jewel tones and ornate details, empty and ready for a pet to be placed.

SCENE ELEMENTS:
- Plush BRIGHT TEAL velvet cushion with intricate GOLD EMBROIDERY and gold tassel, in the foreground
- Sumptuous DEEP RED velvet royal robe with ornate GOLD FILIGREE trim, draped elegantly
- Dainty PEARL NECKLACE with a small colorful gemstone pendant, displayed on the cushion
- Cream RUFFLED LACE COLLAR ready to frame a pet's neck
- DEEP GREEN velvet curtain draped on one side for depth
- Warm GOLDEN-OLIVE background with a soft painterly gradient

LIGHTING: bright warm golden late 18th-century portrait lighting, gentle shadows.
STYLE: classical Flemish/Dutch Golden Age oil painting, visible brushstrokes, museum masterpiece quality.

IMPORTANT:
- Leave clear space in the center for a pet to be composited
- No animals or people in the scene
- Make it look like a real late 18th-century aristocratic portrait painting (Gainsborough, Reynolds, Vigée Le Brun style)"""


def extract_species(description: str) -> str:
    """Pull the [SPECIES] tag the vision model was asked to lead with"""
    match = SPECIES_PATTERN.search(description or "")
    return match.group(1).upper() if match else "PET"


def extract_age(description: str) -> Optional[str]:
    match = AGE_PATTERN.search(description or "")
    return match.group(1).upper() if match else None


def species_enforcement(species: str) -> str:
    if species == "CAT":
        return "CRITICAL: This is a CAT. Generate ONLY a CAT. DO NOT generate a dog. This MUST be a CAT."
    if species == "DOG":
        return "CRITICAL: This is a DOG. Generate ONLY a DOG. DO NOT generate a cat. This MUST be a DOG."
    return f"CRITICAL: This is a {species}. Generate ONLY a {species}."


def is_white_cat(species: str, description: str) -> bool:
    lowered = (description or "").lower()
    return species == "CAT" and any(term in lowered for term in ("white", "snow white", "pure white"))


def feminine_aesthetic(species: str, gender: Optional[str]) -> str:
    if gender != "female":
        return ""
    return f"""
=== FEMININE AESTHETIC ===
This is a FEMALE {species} - apply feminine aesthetic:
- LIGHTER, SOFTER cloak colors - pastel pinks, lavenders, soft blues, pearl whites
- DELICATE fabrics and FINER jewelry with intricate filigree
- GENTLER visual tone - softer lighting, more graceful composition
"""


def white_cat_treatment(species: str, description: str) -> str:
    if not is_white_cat(species, description):
        return ""
    return """
=== WHITE CAT - ANGELIC LUMINOUS TREATMENT ===
- ANGELIC appearance - ethereal, heavenly
- SOFT LUMINOUS GLOW that enhances the white fur
"""


def key_features(description: str, limit: int = 200) -> str:
    if len(description) > limit:
        return description[:limit] + "..."
    return description


def build_royal_portrait_prompt(species: str, description: str, gender: Optional[str] = None) -> str:
    """Prompt for the standard royal portrait, tuned for short image-edit instructions"""
    return f"""{species_enforcement(species)} DO NOT change the {species} at all - keep it exactly as shown in the original image.

Transform this photo into a late 18th-century aristocratic oil portrait of the {species}.
Pet identity to preserve: {key_features(description)}

- The {species} sits regally on a plush velvet cushion with gold embroidery
- A sumptuous velvet robe with ermine trim draped over its shoulders, a delicate pearl necklace
- Rich jewel-tone background, warm golden Rembrandt lighting
- Visible brushstrokes, museum masterpiece quality
- Keep the face, markings, eye color and fur exactly as in the photo
{feminine_aesthetic(species, gender)}{white_cat_treatment(species, description)}"""


def build_rainbow_bridge_prompt(species: str, description: str, gender: Optional[str] = None) -> str:
    """Prompt for the memorial portrait of a pet who has crossed the Rainbow Bridge"""
    return f"""{species_enforcement(species)} DO NOT change the {species} at all - keep it exactly as shown in the original image. This is a {species}, not any other animal.

RAINBOW BRIDGE MEMORIAL PORTRAIT - Heavenly, angelic tribute to a beloved pet who has crossed the Rainbow Bridge.
Pet identity to preserve: {key_features(description)}

- Soft heavenly clouds and a gentle pastel rainbow in the background
- Warm ethereal golden light surrounding the {species}, a subtle halo glow
- Peaceful, serene expression, painterly oil texture
- Leave the lower fifth of the image calm and uncluttered for a name and quote
{feminine_aesthetic(species, gender)}{white_cat_treatment(species, description)}"""


def build_harmonize_prompt(species: str) -> str:
    return f"""Add ONLY a soft shadow beneath the {species} and very slightly blend the hard edges where the {species} meets the background.

CRITICAL - DO NOT MODIFY THE {species.upper()} AT ALL:
- Do NOT change the {species}'s appearance, colors, fur, face, or body
- Do NOT add texture or painterly effects to the {species}

Keep the image bright and beautiful. Museum-quality finish."""


def build_generation_prompt(style: str, description: str, gender: Optional[str] = None) -> Tuple[str, str]:
    """
    Build the generation prompt for a style

    Returns:
        Tuple of (prompt, species)
    """
    species = extract_species(description)
    if style == "rainbow-bridge":
        return build_rainbow_bridge_prompt(species, description, gender), species
    return build_royal_portrait_prompt(species, description, gender), species
