"""EPCIS business-step vocabulary classification.

Business steps arrive in three spellings, all matched case-insensitively:

- bare word: ``shipping``
- CBV URN: ``urn:epcglobal:cbv:bizstep:shipping``
- Digital Link style: ``https://ref.gs1.org/cbv/BizStep-shipping``
"""

from enum import Enum


class BizStep(str, Enum):
    """Business steps the relay distinguishes."""

    shipping = "shipping"
    receiving = "receiving"
    other = "other"


def _matches(value: str, word: str) -> bool:
    lowered = value.lower()
    return (
        lowered == word
        or lowered.endswith(f":{word}")
        or lowered.endswith(f"bizstep-{word}")
    )


def classify_biz_step(value: str | None) -> BizStep:
    """Map a business-step string to shipping, receiving, or other."""
    if not value:
        return BizStep.other
    for step in (BizStep.shipping, BizStep.receiving):
        if _matches(value, step.value):
            return step
    return BizStep.other


def is_shipping_biz_step(value: str | None) -> bool:
    return classify_biz_step(value) is BizStep.shipping


def is_receiving_biz_step(value: str | None) -> bool:
    return classify_biz_step(value) is BizStep.receiving
