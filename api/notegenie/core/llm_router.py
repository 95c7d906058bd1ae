from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from notegenie.core.config import settings


@dataclass(frozen=True)
class ModelRequest:
    has_text: bool


@dataclass(frozen=True)
class ModelTier:
    model: str
    precondition: Callable[[ModelRequest], bool]


def default_tiers() -> List[ModelTier]:
    """
    Ranked (model, precondition) pairs, first match wins.
    Fast model whenever extracted text is available, otherwise the
    capable model reasons over the raw bytes.
    """
    return [
        ModelTier(model=settings.fast_model, precondition=lambda req: req.has_text),
        ModelTier(model=settings.quality_model, precondition=lambda req: True),
    ]


def pick_model(has_text: bool, tiers: Optional[List[ModelTier]] = None) -> str:
    req = ModelRequest(has_text=has_text)
    ranked = tiers if tiers is not None else default_tiers()
    for tier in ranked:
        if tier.precondition(req):
            return tier.model
    return settings.quality_model
