"""Phase code bookkeeping used when identifying picks."""

DOWNWEIGHT = 0.5
GROUPWEIGHT = 0.5
TYPEWEIGHT = 0.1
NULLAFFINITY = 1.0

PHASE_GROUPS: dict[str, tuple[str, ...]] = {
    "P": ("P", "Pg", "Pb", "Pn", "P*", "Pdif", "Pup"),
    "S": ("S", "Sg", "Sb", "Sn", "S*", "Sdif", "Lg"),
    "PKP": ("PKP", "PKPab", "PKPbc", "PKPdf", "PKiKP"),
    "pP": ("pP", "pwP", "sP"),
    "sS": ("sS", "pS"),
}

_GROUP_OF = {code: group for group, codes in PHASE_GROUPS.items() for code in codes}
_TYPE_OF_GROUP = {"P": "P", "S": "S", "PKP": "P", "pP": "P", "sS": "S"}


def phase_group(code: str) -> str:
    return _GROUP_OF.get(code, code)


def phase_type(code: str) -> str:
    """Wave type ("P" or "S") of the final leg, or "" if unknown."""
    group = phase_group(code)
    if group in _TYPE_OF_GROUP:
        return _TYPE_OF_GROUP[group]
    for char in reversed(code):
        if char in ("P", "S"):
            return char
    return ""


def match_factor(observed: str, candidate: str) -> float:
    """Down-weighting factor for identifying ``observed`` as ``candidate``."""
    if observed == candidate:
        return 1.0
    if phase_group(observed) == phase_group(candidate):
        return GROUPWEIGHT
    obs_type = phase_type(observed)
    if obs_type and obs_type == phase_type(candidate):
        return DOWNWEIGHT
    return TYPEWEIGHT
