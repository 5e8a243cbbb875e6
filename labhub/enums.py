"""
Closed value sets used across the data model.
"""

from __future__ import annotations

from enum import Enum


class Channel(str, Enum):
    GENERAL = "general"
    IMAGING = "imaging"
    GENOMICS = "genomics"
    INTEGRATION = "integration"

    @classmethod
    def parse(cls, value: str | None) -> "Channel | None":
        """Return the channel named `value`, or None when it is not enumerated."""
        try:
            return cls(value)
        except ValueError:
            return None


class Role(str, Enum):
    ADMIN = "admin"
    IMAGING = "imaging"
    GENOMICS = "genomics"
    INTEGRATION = "integration"


class MessageType(str, Enum):
    TEXT = "text"
    FILE = "file"
    SYSTEM = "system"


class Phase(str, Enum):
    FOUNDATIONS = "foundations"
    DATA_ACQUISITION = "data-acquisition"
    SEGMENTATION = "segmentation"
    CT_CLASSIFICATION = "ct-classification"
    GENOMIC_CLASSIFICATION = "genomic-classification"
    FUSION = "fusion"
    EXPLAINABILITY = "explainability"
    EVALUATION = "evaluation"
    DISSEMINATION = "dissemination"
    GENERAL = "general"
