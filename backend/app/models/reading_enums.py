"""
Reading enumerations.
"""

import enum


class SpreadType(str, enum.Enum):
    """Tarot spread layouts offered by the reading flow."""
    SINGLE = "SINGLE"
    TWO_CARD = "TWO_CARD"
    THREE_CARD = "THREE_CARD"
    FIVE_CARD = "FIVE_CARD"
    LOVE = "LOVE"
    CAREER = "CAREER"
    HORSESHOE = "HORSESHOE"
    CELTIC_CROSS = "CELTIC_CROSS"
