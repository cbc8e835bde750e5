from __future__ import annotations

import re
from typing import List

from triage_dispatch.models import LinguisticInsights

SYMPTOM_ENTITIES = {
    "pain", "ache", "hurt", "burning", "tingling", "numbness", "swelling", "bleeding",
    "fever", "chills", "sweating", "nausea", "vomiting", "diarrhea",
    "cough", "wheeze", "headache", "migraine", "dizziness", "vertigo", "confusion", "seizure",
    "rash", "itching", "hives", "bruising",
}

BODY_PARTS = {
    "head", "neck", "chest", "abdomen", "stomach", "back", "arm", "leg", "hand", "foot",
    "throat", "ear", "eye", "nose", "heart", "lung", "lungs", "kidney", "liver", "brain",
    "spine", "muscle", "joint", "bone", "skin",
}

NEGATIONS = {"no", "not", "without", "never", "denies", "denied"}

INTENSIFIERS = {
    "extreme": 2.0,
    "extremely": 2.0,
    "unbearable": 2.0,
    "excruciating": 2.0,
    "worst": 2.0,
    "severe": 1.8,
    "crushing": 1.8,
    "terrible": 1.7,
    "awful": 1.6,
    "intense": 1.6,
    "very": 1.5,
    "sharp": 1.5,
    "really": 1.4,
    "sudden": 1.4,
    "bad": 1.3,
}

REDUCERS = {
    "mild": 0.5,
    "minor": 0.5,
    "slight": 0.6,
    "little": 0.6,
    "small": 0.6,
    "bit": 0.7,
    "somewhat": 0.7,
    "moderate": 0.8,
    "moderately": 0.8,
}

# Checked in order; the first marker present decides the onset.
TEMPORAL_MARKERS = (
    ("all of a sudden", "acute"),
    ("suddenly", "acute"),
    ("sudden", "acute"),
    ("minutes", "acute"),
    ("hours", "acute"),
    ("days", "subacute"),
    ("weeks", "chronic"),
    ("months", "chronic"),
    ("years", "chronic"),
    ("ongoing", "chronic"),
    ("persistent", "chronic"),
    ("constant", "chronic"),
)

# Small valence lexicon; negative words signal distress.
DISTRESS_WORDS = {
    "help": -2,
    "scared": -2,
    "afraid": -2,
    "terrified": -3,
    "panic": -3,
    "panicking": -3,
    "dying": -3,
    "die": -3,
    "emergency": -2,
    "unbearable": -3,
    "agony": -3,
    "terrible": -3,
    "awful": -3,
    "worst": -3,
    "bad": -3,
    "pain": -2,
    "crying": -2,
    "fine": 2,
    "okay": 1,
    "better": 2,
    "good": 3,
}

DURATION_PATTERN = re.compile(r"\b(\d+)\s*(minute|hour|day|week|month|year)s?\b")
TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> List[str]:
    return TOKEN_PATTERN.findall(text.lower())


class InsightExtractor:
    """Rule-based linguistic hints: entities, onset, intensity and distress."""

    def analyze(self, text: str) -> LinguisticInsights:
        normalized = " ".join(tokenize(text))
        tokens = normalized.split()

        return LinguisticInsights(
            symptom_entities=self._unique(t for t in tokens if t in SYMPTOM_ENTITIES),
            body_parts=self._unique(t for t in tokens if t in BODY_PARTS),
            negated_terms=self._negated_terms(tokens),
            onset=self._onset(normalized),
            duration=self._duration(normalized),
            frequency=self._frequency(normalized),
            severity_multiplier=self._severity_multiplier(tokens),
            distress_level=self._distress_level(tokens),
        )

    @staticmethod
    def _unique(items) -> tuple:
        return tuple(dict.fromkeys(items))

    def _negated_terms(self, tokens: List[str]) -> tuple:
        negated = (tokens[i + 1] for i, tok in enumerate(tokens[:-1]) if tok in NEGATIONS)
        return self._unique(negated)

    @staticmethod
    def _onset(text: str):
        padded = f" {text} "
        for marker, onset in TEMPORAL_MARKERS:
            if f" {marker} " in padded:
                return onset
        return None

    @staticmethod
    def _duration(text: str):
        match = DURATION_PATTERN.search(text)
        return match.group(0) if match else None

    @staticmethod
    def _frequency(text: str):
        if "constant" in text or "continuous" in text:
            return "constant"
        if "intermittent" in text or "comes and goes" in text:
            return "intermittent"
        return None

    @staticmethod
    def _severity_multiplier(tokens: List[str]) -> float:
        multiplier = 1.0
        for token in tokens:
            multiplier *= INTENSIFIERS.get(token, 1.0) * REDUCERS.get(token, 1.0)
        return round(max(0.1, min(multiplier, 3.0)), 3)

    @staticmethod
    def _distress_level(tokens: List[str]) -> str:
        scored = [DISTRESS_WORDS[t] for t in tokens if t in DISTRESS_WORDS]
        if not scored:
            return "low"
        score = sum(scored) / len(scored)
        if score < -2:
            return "high"
        if score < 0:
            return "medium"
        return "low"
