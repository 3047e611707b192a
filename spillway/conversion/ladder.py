"""
Rendition selection against the fixed quality ladder.
"""

from typing import List, Optional

from .constants import QUALITY_LADDER
from .models import RenditionSpec


def select_renditions(width: int, height: int) -> List[RenditionSpec]:
    """
    Pick the ladder rungs worth encoding for a source.

    The source's larger dimension is the limit so portrait videos keep
    their quality. Rungs above it are dropped; when nothing fits the
    lowest rung is used on its own.
    """
    limit = max(width, height)
    selected = [spec for spec in QUALITY_LADDER if spec.height <= limit]
    if not selected:
        selected = [QUALITY_LADDER[-1]]
    return selected


def get_rendition_by_name(name: str) -> Optional[RenditionSpec]:
    lowered = name.lower()
    for spec in QUALITY_LADDER:
        if spec.name.lower() == lowered:
            return spec
    return None


def get_rendition_by_height(height: int) -> RenditionSpec:
    """Closest rung by height; ties go to the higher rung."""
    return min(QUALITY_LADDER, key=lambda spec: abs(spec.height - height))


def best_rendition_for_resolution(width: int, height: int) -> RenditionSpec:
    """Highest rung the source can fill."""
    return select_renditions(width, height)[0]
