"""Normalization and size categorization of provider model lists."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping, Optional, Union

from core.models import ModelCategory, ModelInfo

logger = logging.getLogger(__name__)


# Mixture-of-experts counts such as "8x7B"
_MOE_PATTERN = re.compile(r"(?<![\d.])(\d+)\s*x\s*(\d+(?:\.\d+)?)\s*b(?![a-z])")
# Plain parameter counts such as "7B", "1.5B", "360M"
_PARAMS_PATTERN = re.compile(r"(?<![\d.])(\d+(?:\.\d+)?)\s*([bm])(?![a-z])")
_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")

# Inclusive upper bound in billions of parameters, checked in order
_SIZE_PRECEDENCE: tuple[tuple[float, ModelCategory], ...] = (
    (3.9, ModelCategory.SMALL),
    (14.0, ModelCategory.MEDIUM),
)

_SMALL_KEYWORDS = frozenset({"tiny", "mini", "nano", "small", "lite"})
_LARGE_KEYWORDS = frozenset({"large", "xl", "xxl", "ultra"})

_ID_KEYS = ("id", "model_id", "modelId", "model", "name")
_NAME_KEYS = ("display_name", "displayName", "name", "model", "id")
_DESCRIPTION_KEYS = ("description", "summary")
_MAX_TOKEN_KEYS = (
    "max_tokens",
    "maxTokens",
    "context_length",
    "contextLength",
    "context_window",
    "inputTokenLimit",
)
_VISION_HINTS = (
    "vision",
    "llava",
    "pixtral",
    "qwen-vl",
    "qwen2-vl",
    "idefics",
    "minicpm-v",
    "phi-3-vision",
    "phi-3.5-vision",
    "gemini",
)

RawModel = Union[ModelInfo, Mapping[str, Any]]


class ModelCatalog:
    """Pure helpers turning raw provider model entries into ``ModelInfo``."""

    @staticmethod
    def parameter_count(text: str) -> Optional[float]:
        """Largest parameter count mentioned in ``text``, in billions."""
        lowered = (text or "").lower()
        counts: list[float] = []
        for experts, size in _MOE_PATTERN.findall(lowered):
            counts.append(int(experts) * float(size))
        for number, unit in _PARAMS_PATTERN.findall(lowered):
            value = float(number)
            counts.append(value / 1000.0 if unit == "m" else value)
        if not counts:
            return None
        return max(counts)

    @staticmethod
    def categorize(text: str) -> ModelCategory:
        """
        Assign a size category from a model id or name.

        Parameter counts win over keywords. Text with neither falls back
        to ``medium``.
        """
        count = ModelCatalog.parameter_count(text)
        if count is not None:
            for upper_bound, category in _SIZE_PRECEDENCE:
                if count <= upper_bound:
                    return category
            return ModelCategory.LARGE

        tokens = set(_TOKEN_SPLIT.split((text or "").lower()))
        if tokens & _SMALL_KEYWORDS:
            return ModelCategory.SMALL
        if tokens & _LARGE_KEYWORDS:
            return ModelCategory.LARGE
        return ModelCategory.MEDIUM

    @staticmethod
    def normalize(raw: RawModel) -> Optional[ModelInfo]:
        """Convert one provider entry; returns None for entries without an id."""
        if isinstance(raw, ModelInfo):
            return raw
        if not isinstance(raw, Mapping):
            logger.debug("Skipping model entry of type %s", type(raw).__name__)
            return None

        model_id = _first_str(raw, _ID_KEYS)
        if not model_id:
            return None
        name = _first_str(raw, _NAME_KEYS) or model_id
        size = _size_label(raw)

        category = _explicit_category(raw.get("category"))
        if category is None:
            category = ModelCatalog.categorize(" ".join(filter(None, (size, model_id, name))))

        return ModelInfo(
            id=model_id,
            name=name,
            description=_first_str(raw, _DESCRIPTION_KEYS) or "",
            category=category,
            max_tokens=_first_int(raw, _MAX_TOKEN_KEYS),
            supports_vision=ModelCatalog.supports_vision(raw, model_id),
            size=size,
            download_size=_first_str(raw, ("download_size", "downloadSize")),
        )

    @staticmethod
    def normalize_all(raw_models: Iterable[RawModel]) -> list[ModelInfo]:
        """Normalize a provider list, dropping invalid entries and duplicate ids."""
        models: list[ModelInfo] = []
        seen: set[str] = set()
        for raw in raw_models or []:
            model = ModelCatalog.normalize(raw)
            if model is None or model.id in seen:
                continue
            seen.add(model.id)
            models.append(model)
        return models

    @staticmethod
    def categorized_models(
        models: Iterable[ModelInfo],
    ) -> dict[ModelCategory, list[ModelInfo]]:
        """Group models by category, keeping catalog order inside each group."""
        grouped: dict[ModelCategory, list[ModelInfo]] = {
            category: [] for category in ModelCategory
        }
        for model in models:
            grouped[model.category].append(model)
        return grouped

    @staticmethod
    def first_of_category(
        models: Iterable[ModelInfo],
        category: ModelCategory,
    ) -> Optional[ModelInfo]:
        return next((m for m in models if m.category == category), None)

    @staticmethod
    def supports_vision(raw: Mapping[str, Any], model_id: str) -> Optional[bool]:
        explicit = raw.get("supports_vision", raw.get("supportsVision"))
        if isinstance(explicit, bool):
            return explicit
        from_metadata = _extract_supports_images(raw)
        if from_metadata is not None:
            return from_metadata
        lowered = model_id.lower()
        if any(hint in lowered for hint in _VISION_HINTS):
            return True
        return None


def categorize(text: str) -> ModelCategory:
    return ModelCatalog.categorize(text)


def _first_str(raw: Mapping[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first_int(raw: Mapping[str, Any], keys: Iterable[str]) -> Optional[int]:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)) and value > 0:
            return int(value)
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def _size_label(raw: Mapping[str, Any]) -> Optional[str]:
    size = _first_str(raw, ("size", "parameter_size", "parameterSize"))
    if size:
        return size
    details = raw.get("details")
    if isinstance(details, Mapping):
        return _first_str(details, ("parameter_size", "parameterSize"))
    return None


def _explicit_category(value: Any) -> Optional[ModelCategory]:
    if isinstance(value, ModelCategory):
        return value
    if isinstance(value, str):
        try:
            return ModelCategory(value.strip().lower())
        except ValueError:
            return None
    return None


def _extract_supports_images(model: Mapping[str, Any]) -> Optional[bool]:
    for key in ("input_modalities", "inputModalities", "modalities"):
        modalities = _normalize_modalities(model.get(key))
        if modalities:
            return any(item in modalities for item in ("image", "vision", "multimodal"))

    capabilities = model.get("capabilities")
    if isinstance(capabilities, Mapping):
        for key in ("vision", "image", "multimodal"):
            value = capabilities.get(key)
            if isinstance(value, bool) and value:
                return True
    elif isinstance(capabilities, list):
        lowered = [str(item).lower() for item in capabilities]
        if any(item in lowered for item in ("vision", "image", "multimodal")):
            return True

    architecture = model.get("architecture")
    if isinstance(architecture, Mapping):
        modality = architecture.get("modality") or architecture.get("input_modality")
        if isinstance(modality, str):
            lowered = modality.lower()
            if "image" in lowered or "vision" in lowered or "multi" in lowered:
                return True

    return None


def _normalize_modalities(value: object) -> list[str]:
    if isinstance(value, list):
        return [str(item).lower() for item in value]
    if isinstance(value, dict):
        return [
            str(key).lower()
            for key, enabled in value.items()
            if bool(enabled)
        ]
    if isinstance(value, str):
        return [value.lower()]
    return []
