from __future__ import annotations

from photopipe.domain.entities.image_edits import ImageEdits

LIVE_DEBOUNCE_MS = 50
FULL_DEBOUNCE_MS = 300

# Operations a CSS filter over the unmodified base can approximate
LIVE_OPERATIONS = frozenset({"brightness", "contrast", "saturation", "grayscale"})


def is_live_only(edits: ImageEdits) -> bool:
    """True when every active operation is a cheap CSS-expressible adjustment.

    Advisory only: it picks the debounce interval and whether a client preview
    is shown. The executor output stays authoritative.
    """
    ops = edits.active_operations()
    return bool(ops) and LIVE_OPERATIONS.issuperset(ops)


def debounce_ms(edits: ImageEdits, live_ms: int = LIVE_DEBOUNCE_MS, full_ms: int = FULL_DEBOUNCE_MS) -> int:
    return live_ms if is_live_only(edits) else full_ms


def css_filter(edits: ImageEdits) -> str:
    if not is_live_only(edits):
        return "none"
    parts = []
    if edits.brightness:
        parts.append(f"brightness({_pct(100 + edits.brightness)}%)")
    if edits.contrast:
        parts.append(f"contrast({_pct(100 + edits.contrast)}%)")
    if edits.saturation:
        parts.append(f"saturate({_pct(100 + edits.saturation)}%)")
    if edits.grayscale:
        parts.append("grayscale(100%)")
    return " ".join(parts) or "none"


def _pct(value: float) -> str:
    return f"{value:g}"
