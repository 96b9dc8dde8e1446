"""
OmniFlow CRM - AI cost & credit calculation

Pure functions. Prices are per provider list price, the platform
charges PLATFORM_PRICING_MARGIN times the raw cost.
"""

import math
import re
from typing import Dict, Optional

DEFAULT_AI_PRICING = {
    "text_generation": {"input": 0.10, "output": 0.40},  # USD per 1M tokens
    "image_generation": {"imagen3": 0.03, "imagen4": 0.04, "imagen4_ultra": 0.06},  # USD per image
    "text_to_speech": {"per_character": 0.000016},
}

PLATFORM_PRICING_MARGIN = 2.0

DEFAULT_CREDIT_CONFIG = {
    "text_generation_credits": 1,
    "image_generation_credits": 25,
    "tts_credits": 5,
    "video_generation_credits": 50,
}

OPERATION_TYPES = ["text_generation", "image_generation", "text_to_speech", "video_generation"]

_IMAGE_MODELS = {
    "imagen-3": "imagen3",
    "imagen-4": "imagen4",
    "imagen-4-ultra": "imagen4_ultra",
}


def _with_margin(raw_cost: float) -> Dict[str, float]:
    platform_cost = raw_cost * PLATFORM_PRICING_MARGIN
    return {
        "raw_cost": raw_cost,
        "platform_cost": platform_cost,
        "margin": platform_cost - raw_cost,
    }


def calculate_text_generation_cost(input_tokens: int, output_tokens: int, pricing: Dict = None) -> Dict[str, float]:
    pricing = pricing or DEFAULT_AI_PRICING
    input_cost = (input_tokens / 1_000_000) * pricing["text_generation"]["input"]
    output_cost = (output_tokens / 1_000_000) * pricing["text_generation"]["output"]
    return _with_margin(input_cost + output_cost)


def calculate_image_generation_cost(image_count: int, model: str = "imagen-4", pricing: Dict = None) -> Dict[str, float]:
    pricing = pricing or DEFAULT_AI_PRICING
    key = _IMAGE_MODELS.get(model, "imagen4")
    return _with_margin(image_count * pricing["image_generation"][key])


def calculate_tts_cost(character_count: int, pricing: Dict = None) -> Dict[str, float]:
    pricing = pricing or DEFAULT_AI_PRICING
    return _with_margin(character_count * pricing["text_to_speech"]["per_character"])


def calculate_credits_consumed(operation_type: str, config: Dict = None, metadata: Optional[Dict] = None) -> int:
    """Flat rate per request, images scale with count. Unknown operations cost 1."""
    config = config or DEFAULT_CREDIT_CONFIG
    metadata = metadata or {}

    if operation_type == "text_generation":
        return config["text_generation_credits"]
    if operation_type == "image_generation":
        return config["image_generation_credits"] * (metadata.get("images") or 1)
    if operation_type == "text_to_speech":
        return config["tts_credits"]
    if operation_type == "video_generation":
        return config["video_generation_credits"]
    return 1


def estimate_monthly_cost(
    text_generations: int,
    avg_input_tokens: int,
    avg_output_tokens: int,
    image_generations: int,
    tts_requests: int,
    avg_characters: int,
) -> Dict[str, float]:
    text = calculate_text_generation_cost(
        text_generations * avg_input_tokens,
        text_generations * avg_output_tokens,
    )
    image = calculate_image_generation_cost(image_generations)
    tts = calculate_tts_cost(tts_requests * avg_characters)

    return {
        key: text[key] + image[key] + tts[key]
        for key in ("raw_cost", "platform_cost", "margin")
    }


def suggest_plan_for_usage(credits_per_month: int) -> Dict:
    if credits_per_month <= 500:
        return {"plan_id": "plan_free", "plan_name": "Free", "credits_included": 500, "estimated_monthly_cost": 0}
    if credits_per_month <= 2000:
        return {"plan_id": "plan_starter", "plan_name": "Starter", "credits_included": 2000, "estimated_monthly_cost": 29}
    if credits_per_month <= 10000:
        return {"plan_id": "plan_pro", "plan_name": "Pro", "credits_included": 10000, "estimated_monthly_cost": 79}
    return {"plan_id": "plan_enterprise", "plan_name": "Enterprise", "credits_included": 50000, "estimated_monthly_cost": 199}


def estimate_token_count(text: str) -> int:
    """Weighted average of a chars/4 and a word-count estimate."""
    if not text:
        return 0
    words = len(re.split(r"\s+", text))
    chars = len(text)
    return math.ceil((chars / 4 + words) / 2)
