"""Prompt templates for label extraction and wine enrichment."""

import json

from vinho_pipeline.core.enums import WineType
from vinho_pipeline.core.schema import WineDescriptor

PROMPT_VERSION = "2.1"

_PRODUCER_PROPERTIES = {
    "producer_website": {"type": ["string", "null"], "description": "Producer website"},
    "producer_address": {"type": ["string", "null"], "description": "Winery street address"},
    "producer_city": {"type": ["string", "null"]},
    "producer_postal_code": {"type": ["string", "null"]},
    "latitude": {"type": ["number", "null"], "description": "Winery latitude"},
    "longitude": {"type": ["number", "null"], "description": "Winery longitude"},
}

# JSON Schema for the label extraction output (simplified for the model)
LABEL_JSON_SCHEMA = {
    "type": "object",
    "required": ["winery_name", "wine_name", "confidence"],
    "properties": {
        "winery_name": {"type": "string", "description": "Producer/winery name"},
        "wine_name": {"type": "string", "description": "Wine name or cuvée"},
        "varietals": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Grape varieties visible on the label, empty if none",
        },
        "year": {"type": ["integer", "null"], "description": "Vintage year or null"},
        "region": {"type": ["string", "null"], "description": "Region or appellation"},
        "country": {"type": ["string", "null"], "description": "Country of origin"},
        "abv_percent": {"type": ["number", "null"], "description": "Alcohol by volume"},
        **_PRODUCER_PROPERTIES,
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    },
}

ENRICHMENT_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "wine_type": {
            "type": ["string", "null"],
            "enum": [t.value for t in WineType] + [None],
        },
        "color": {"type": ["string", "null"], "description": "e.g. ruby, straw, salmon"},
        "style": {"type": ["string", "null"], "description": "e.g. full-bodied, crisp"},
        "food_pairings": {"type": "array", "items": {"type": "string"}},
        "serving_temperature": {"type": ["string", "null"], "description": "e.g. 16-18°C"},
        "tasting_notes": {"type": ["string", "null"]},
        "varietals": {"type": "array", "items": {"type": "string"}},
        "year": {"type": ["integer", "null"], "description": "Most common vintage, if missing"},
        "region": {"type": ["string", "null"]},
        "country": {"type": ["string", "null"]},
        **_PRODUCER_PROPERTIES,
    },
}

LABEL_SYSTEM_PROMPT = """You are a master sommelier with expertise in reading wine labels. Extract ONLY information that is VISIBLE on the label. Respond with a single JSON object and nothing else. Use null for missing data; never invent or assume information."""

ENRICHMENT_SYSTEM_PROMPT = """You are a wine expert with extensive knowledge of global wine regions, producers and grape varietals. Respond with a single JSON object and nothing else. The varietals and food_pairings fields must be arrays of strings."""


def build_label_prompt(ocr_text: str | None = None) -> str:
    """
    Build the user prompt sent alongside the label image.

    Args:
        ocr_text: Text already recognized on the device, if any.

    Returns:
        The formatted prompt string.
    """
    ocr_section = f'\nOCR text detected on the label: "{ocr_text}"\n' if ocr_text else ""
    schema = json.dumps(LABEL_JSON_SCHEMA, indent=2, ensure_ascii=False)
    return f"""Carefully examine this wine label and extract its identity.
{ocr_section}
Priorities:
1. Producer/winery name - usually the largest or most prominent text
2. Wine name/cuvée - the specific designation or proprietary name
3. Vintage year - a 4-digit year; return null if none is visible (do NOT assume NV)
4. Grape varieties - any grape names, e.g. "100% Touriga Nacional"; empty array if none
5. Region/appellation and country
6. Alcohol content - shown as "% ALC/VOL" or "% ABV"
7. Producer address and website - often printed on the back label

Set confidence from 0 to 1 to reflect how legible the label was.

Return a JSON object matching this schema:
{schema}"""


def build_enrichment_prompt(wine: WineDescriptor) -> str:
    """
    Build the user prompt for enriching a known wine.

    Args:
        wine: Facts already known about the wine.

    Returns:
        The formatted prompt string.
    """
    varietals = ", ".join(wine.varietals) if wine.varietals else "none identified"
    origin = wine.region or wine.country or "its production region"
    schema = json.dumps(ENRICHMENT_JSON_SCHEMA, indent=2, ensure_ascii=False)
    return f"""Given this wine:
- Producer: {wine.producer}
- Wine: {wine.wine_name}
- Year: {wine.year or "unknown"}
- Region: {wine.region or "unknown"}
- Country: {wine.country or "unknown"}
- Current varietals: {varietals}

Based on your knowledge of this producer and wine, provide:
1. wine_type: one of {", ".join(t.value for t in WineType)}
2. color: the wine's color in the glass
3. style: a short style description (e.g. "full-bodied", "crisp and mineral")
4. food_pairings: 3-5 dishes
5. serving_temperature: recommended range
6. tasting_notes: one or two sentences
7. varietals: the ACTUAL grapes used in this wine, all of them if it is a blend
8. year, region, country: only where unknown above and you are confident
9. The producer's website, and the address and GPS coordinates of the WINERY
   where this wine is made (in or near {origin}, not a sales office)

Use null for anything you do not know. Return a JSON object matching this schema:
{schema}"""
