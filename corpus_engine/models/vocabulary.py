"""Closed vocabularies for the data-collection and annotation schema.

Each vocabulary is a str-valued Enum plus a lookup table keyed by the
lowercase value. The parser and the stores both validate through
``lookup()`` so a value accepted on upload is always one the corpus accepts.
"""

from enum import Enum
from typing import Dict, Optional, Type, TypeVar


class Script(str, Enum):
    LATIN = "latin"
    GEEZ = "geez"
    ARABIC = "arabic"
    AJAMI = "ajami"
    TIFINAGH = "tifinagh"
    NKO = "nko"
    VAI = "vai"
    OTHER = "other"


class SourceType(str, Enum):
    COMMUNITY = "community"
    WEB_PUBLIC = "web_public"
    INTERVIEW = "interview"
    MEDIA = "media"
    OTHER = "other"


class Domain(str, Enum):
    CULTURE_AND_RELIGION = "culture_and_religion"
    EDUCATION = "education"
    HEALTH = "health"
    LIVELIHOODS_AND_WORK = "livelihoods_and_work"
    GOVERNANCE_CIVIC = "governance_civic"
    MEDIA_AND_ONLINE = "media_and_online"
    HOUSEHOLD_AND_CARE = "household_and_care"


class Theme(str, Enum):
    STEREOTYPES = "stereotypes"
    HATE_OR_INSULT = "hate_or_insult"
    MISINFORMATION = "misinformation"
    PUBLIC_INTEREST = "public_interest"
    SPECIALIZED_ADVICE = "specialized_advice"


class SensitiveCharacteristic(str, Enum):
    AGE = "age"
    DISABILITY = "disability"
    ETHNICITY = "ethnicity"
    GENDER = "gender"
    HEALTH_STATUS = "health_status"
    INCOME_LEVEL = "income_level"
    NATIONALITY = "nationality"
    RELIGION = "religion"
    TRIBE = "tribe"
    OTHER = "other"


class SafetyFlag(str, Enum):
    SAFE = "safe"
    SENSITIVE = "sensitive"
    REJECT = "reject"


class TargetGender(str, Enum):
    FEMALE = "female"
    MALE = "male"
    NEUTRAL = "neutral"
    MIXED = "mixed"
    NONBINARY = "nonbinary"
    UNKNOWN = "unknown"


class BiasLabel(str, Enum):
    STEREOTYPE = "stereotype"
    COUNTER_STEREOTYPE = "counter-stereotype"
    NEUTRAL = "neutral"
    DEROGATION = "derogation"


class Explicitness(str, Enum):
    EXPLICIT = "explicit"
    IMPLICIT = "implicit"


class StereotypeCategory(str, Enum):
    PROFESSION = "profession"
    FAMILY_ROLE = "family_role"
    LEADERSHIP = "leadership"
    EDUCATION = "education"
    RELIGION_CULTURE = "religion_culture"
    PROVERB_IDIOM = "proverb_idiom"
    DAILY_LIFE = "daily_life"
    APPEARANCE = "appearance"
    CAPABILITY = "capability"


class SentimentTowardReferent(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class Device(str, Enum):
    METAPHOR = "metaphor"
    PROVERB = "proverb"
    SARCASM = "sarcasm"
    QUESTION = "question"
    DIRECTIVE = "directive"
    NARRATIVE = "narrative"


class QAStatus(str, Enum):
    GOLD = "gold"
    PASSED = "passed"
    NEEDS_REVIEW = "needs_review"
    REJECTED = "rejected"


E = TypeVar("E", bound=Enum)

VOCABULARIES: Dict[Type[Enum], Dict[str, Enum]] = {
    vocabulary: {member.value: member for member in vocabulary}
    for vocabulary in (
        Script,
        SourceType,
        Domain,
        Theme,
        SensitiveCharacteristic,
        SafetyFlag,
        TargetGender,
        BiasLabel,
        Explicitness,
        StereotypeCategory,
        SentimentTowardReferent,
        Device,
        QAStatus,
    )
}


def lookup(vocabulary: Type[E], raw: Optional[str]) -> Optional[E]:
    """Resolve a raw cell value against a closed vocabulary.

    Matching is case-insensitive and ignores surrounding whitespace.

    Returns:
        The vocabulary member, or None when the value is blank or unknown.
    """
    if raw is None:
        return None
    normalized = str(raw).strip().lower()
    if not normalized:
        return None
    return VOCABULARIES[vocabulary].get(normalized)
