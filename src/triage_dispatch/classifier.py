from __future__ import annotations

import logging
from collections import Counter
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

import httpx

from triage_dispatch.config import CLASSIFIER_TIMEOUT_SECONDS
from triage_dispatch.errors import ClassifierUnavailable
from triage_dispatch.insights import NEGATIONS, InsightExtractor
from triage_dispatch.models import (
    CRITICAL,
    HIGH,
    LOW,
    MEDIUM,
    SEVERITY_TIERS,
    DetectedSymptom,
    LinguisticInsights,
    SymptomInput,
    TriageResult,
)
from triage_dispatch.serialization import symptom_input_to_dict, triage_from_dict

logger = logging.getLogger(__name__)

# keyword -> category affinity, grouped by sub-severity.
KEYWORD_TABLE = {
    "critical": {
        "chest pain": "cardiac",
        "heart attack": "cardiac",
        "cardiac arrest": "cardiac",
        "chest pressure": "cardiac",
        "crushing chest pain": "cardiac",
        "heart racing": "cardiac",
        "can't breathe": "respiratory",
        "cannot breathe": "respiratory",
        "not breathing": "respiratory",
        "difficulty breathing": "respiratory",
        "choking": "respiratory",
        "gasping": "respiratory",
        "blue lips": "respiratory",
        "stroke": "neurological",
        "seizure": "neurological",
        "unconscious": "neurological",
        "unresponsive": "neurological",
        "paralysis": "neurological",
        "severe headache": "neurological",
        "slurred speech": "neurological",
        "severe bleeding": "bleeding",
        "heavy bleeding": "bleeding",
        "blood loss": "bleeding",
        "deep cut": "bleeding",
        "head injury": "trauma",
        "gunshot": "trauma",
        "stab wound": "trauma",
        "compound fracture": "fracture",
        "broken bone": "fracture",
        "overdose": "poisoning",
        "poisoning": "poisoning",
        "anaphylaxis": "allergic",
        "severe allergic reaction": "allergic",
        "severe burns": "burn",
        "severe burn": "burn",
        "hypothermia": "general",
    },
    "urgent": {
        "chest discomfort": "cardiac",
        "heart palpitations": "cardiac",
        "irregular heartbeat": "cardiac",
        "breathing difficulty": "respiratory",
        "shortness of breath": "respiratory",
        "asthma attack": "respiratory",
        "cough with blood": "respiratory",
        "wheezing": "respiratory",
        "migraine": "neurological",
        "intense headache": "neurological",
        "vomiting blood": "bleeding",
        "bleeding": "bleeding",
        "swallowed chemicals": "poisoning",
        "allergic reaction": "allergic",
        "difficulty swallowing": "allergic",
        "burns": "burn",
        "burn": "burn",
        "scalded": "burn",
        "fracture": "fracture",
        "car accident": "trauma",
        "fall from height": "trauma",
        "severe abdominal pain": "general",
        "high fever": "general",
    },
    "moderate": {
        "headache": "neurological",
        "dizziness": "neurological",
        "sore throat": "respiratory",
        "persistent cough": "respiratory",
        "congestion": "respiratory",
        "minor cut": "bleeding",
        "rash": "allergic",
        "hives": "allergic",
        "swelling": "allergic",
        "minor burn": "burn",
        "sprain": "fracture",
        "bruising": "trauma",
        "fever": "general",
        "nausea": "general",
        "vomiting": "general",
        "diarrhea": "general",
        "abdominal pain": "general",
        "back pain": "general",
        "joint pain": "general",
        "muscle pain": "general",
        "ear pain": "general",
        "fatigue": "general",
    },
    "mild": {
        "minor headache": "neurological",
        "runny nose": "respiratory",
        "cough": "respiratory",
        "small cut": "bleeding",
        "minor bruise": "trauma",
        "slight fever": "general",
        "slight pain": "general",
        "tired": "general",
    },
}

SUB_SEVERITY_WEIGHTS = {"critical": 50, "urgent": 30, "moderate": 6, "mild": 1}

# Minimum cumulative weight per tier, most severe first.
SEVERITY_THRESHOLDS = ((CRITICAL, 50), (HIGH, 30), (MEDIUM, 6))

URGENCY_TIERS = {"immediate": CRITICAL, "urgent": HIGH, "moderate": MEDIUM}

RAISE_MULTIPLIER = 1.5

STOPWORDS = {
    "a", "an", "and", "the", "of", "with", "my", "i", "im", "is", "am", "are", "was", "has",
    "have", "had", "he", "she", "they", "it", "his", "her", "me", "in", "on", "at", "to",
    "for", "from", "since", "very", "some", "been", "be", "feel", "feeling", "s", "t",
}

# Entity hints used only to settle a category tie.
ENTITY_AFFINITY = {
    "chest": "cardiac",
    "heart": "cardiac",
    "lung": "respiratory",
    "lungs": "respiratory",
    "throat": "respiratory",
    "cough": "respiratory",
    "wheeze": "respiratory",
    "head": "neurological",
    "brain": "neurological",
    "seizure": "neurological",
    "confusion": "neurological",
    "dizziness": "neurological",
    "bleeding": "bleeding",
    "hives": "allergic",
    "rash": "allergic",
    "itching": "allergic",
    "swelling": "allergic",
    "burning": "burn",
    "skin": "burn",
    "bone": "fracture",
    "joint": "fracture",
    "spine": "trauma",
    "bruising": "trauma",
    "stomach": "general",
    "abdomen": "general",
}

RECOMMENDATIONS = {
    CRITICAL: (
        "Call emergency services immediately",
        "Do not move the patient unless absolutely necessary",
        "Monitor vital signs continuously",
        "Be prepared to perform CPR if needed",
    ),
    HIGH: (
        "Seek immediate medical attention",
        "Go to the emergency room or wait for the ambulance",
        "Monitor symptoms closely",
        "Notify emergency contacts",
    ),
    MEDIUM: (
        "Schedule an appointment with a healthcare provider",
        "Monitor symptoms for changes",
        "Consider urgent care if symptoms worsen",
    ),
    LOW: (
        "Rest and monitor symptoms",
        "Consult a healthcare provider if symptoms persist",
    ),
}

FALLBACK_RECOMMENDATIONS = (
    "Emergency services have been notified",
    "Stay calm and follow dispatcher instructions",
    "Monitor the patient closely",
)

PRIORITY_BY_SEVERITY = {CRITICAL: 5, HIGH: 4, MEDIUM: 3, LOW: 2}


class Classifier(Protocol):
    def classify(self, symptom_input: SymptomInput) -> TriageResult:
        ...


def tokenize(text: str) -> List[str]:
    clean = "".join(ch.lower() if ch.isalnum() or ch.isspace() else " " for ch in text)
    return [t for t in clean.split() if t]


def _build_keyword_index() -> Tuple[Tuple[Tuple[str, ...], DetectedSymptom], ...]:
    entries = []
    for sub_severity, keywords in KEYWORD_TABLE.items():
        for keyword, category in keywords.items():
            entries.append((tuple(tokenize(keyword)), DetectedSymptom(keyword, sub_severity, category)))
    # Longest phrases first so "crushing chest pain" wins over "chest pain".
    entries.sort(key=lambda item: (-len(item[0]), -SUB_SEVERITY_WEIGHTS[item[1].severity]))
    return tuple(entries)


KEYWORD_INDEX = _build_keyword_index()


def raise_one_step(severity: str) -> str:
    index = SEVERITY_TIERS.index(severity)
    return SEVERITY_TIERS[min(index + 1, len(SEVERITY_TIERS) - 1)]


def tier_for_weight(weight: int) -> str:
    for tier, threshold in SEVERITY_THRESHOLDS:
        if weight >= threshold:
            return tier
    return LOW


def compute_priority(severity: str, symptom_input: SymptomInput) -> int:
    priority = PRIORITY_BY_SEVERITY[severity]
    patient = symptom_input.patient
    if patient is not None:
        if patient.age is not None and (patient.age >= 65 or patient.age <= 5):
            priority += 1
        if patient.known_conditions:
            priority += 1
    return min(5, priority)


class SeverityClassifier:
    """Keyword-table triage with optional linguistic refinement."""

    def __init__(self, insight_extractor: Optional[InsightExtractor] = None, use_insights: bool = True) -> None:
        self.insight_extractor = insight_extractor or InsightExtractor()
        self.use_insights = use_insights

    @staticmethod
    def match_keywords(tokens: Sequence[str]) -> Tuple[List[DetectedSymptom], int]:
        """Return matched keywords in order and the number of tokens they cover."""
        work: List[Optional[str]] = list(tokens)
        matches: List[DetectedSymptom] = []
        covered = 0

        for phrase, symptom in KEYWORD_INDEX:
            size = len(phrase)
            i = 0
            while i <= len(work) - size:
                if tuple(work[i : i + size]) != phrase:
                    i += 1
                    continue
                negated = i > 0 and tokens[i - 1] in NEGATIONS
                work[i : i + size] = [None] * size
                if not negated:
                    matches.append(symptom)
                    covered += size
                i += size
        return matches, covered

    def classify(self, symptom_input: SymptomInput) -> TriageResult:
        description_tokens = tokenize(symptom_input.description)
        description_matches, covered = self.match_keywords(description_tokens)

        tag_matches: List[DetectedSymptom] = []
        tag_token_count = 0
        for tag in symptom_input.quick_symptoms:
            tag_tokens = tokenize(tag)
            tag_token_count += len([t for t in tag_tokens if t not in STOPWORDS])
            found, tag_covered = self.match_keywords(tag_tokens)
            tag_matches.extend(found)
            covered += tag_covered

        detected = self._ordered_unique(tag_matches + description_matches)
        weight = sum(SUB_SEVERITY_WEIGHTS[s.severity] for s in detected)

        insights = None
        if self.use_insights:
            insights = self.insight_extractor.analyze(
                " ".join(list(symptom_input.quick_symptoms) + [symptom_input.description])
            )

        severity = self._severity(tier_for_weight(weight), bool(detected), insights, symptom_input.urgency)
        category = self._category(detected, {s.keyword for s in tag_matches}, insights)

        total_tokens = len([t for t in description_tokens if t not in STOPWORDS]) + tag_token_count
        confidence = self._confidence(covered, total_tokens, bool(detected))

        return TriageResult(
            severity=severity,
            confidence=confidence,
            detected_symptoms=tuple(detected),
            category=category,
            insights=insights,
            priority=compute_priority(severity, symptom_input),
            recommendations=RECOMMENDATIONS[severity],
            source="keyword",
        )

    @staticmethod
    def _ordered_unique(symptoms: Iterable[DetectedSymptom]) -> List[DetectedSymptom]:
        unique: Dict[str, DetectedSymptom] = {}
        for symptom in symptoms:
            unique.setdefault(symptom.keyword, symptom)
        return sorted(unique.values(), key=lambda s: -SUB_SEVERITY_WEIGHTS[s.severity])

    @staticmethod
    def _confidence(covered: int, total_tokens: int, matched: bool) -> int:
        if not matched or total_tokens == 0:
            return 25
        coverage = min(1.0, covered / total_tokens)
        return max(0, min(100, round(25 + 70 * coverage)))

    @staticmethod
    def _severity(
        base: str,
        matched: bool,
        insights: Optional[LinguisticInsights],
        urgency: Optional[str],
    ) -> str:
        # Adjustments can only raise the keyword tier, and by one step at most.
        should_raise = False
        if insights is not None and matched:
            intense = insights.severity_multiplier >= RAISE_MULTIPLIER
            acute_distress = insights.onset == "acute" and insights.distress_level == "high"
            should_raise = intense or acute_distress

        reported = URGENCY_TIERS.get(urgency or "")
        if reported and SEVERITY_TIERS.index(reported) > SEVERITY_TIERS.index(base):
            should_raise = True

        return raise_one_step(base) if should_raise else base

    @staticmethod
    def _category(
        detected: Sequence[DetectedSymptom],
        tag_keywords: Set[str],
        insights: Optional[LinguisticInsights],
    ) -> str:
        if not detected:
            return "general"

        votes: Counter = Counter()
        for symptom in detected:
            weight = SUB_SEVERITY_WEIGHTS[symptom.severity]
            votes[symptom.category] += weight
            if symptom.keyword in tag_keywords:
                votes[symptom.category] += weight

        top = max(votes.values())
        tied = [category for category, vote in votes.items() if vote == top]
        if len(tied) == 1:
            return tied[0]
        if "general" in tied or insights is None:
            return "general"

        hints: Counter = Counter()
        for entity in insights.body_parts + insights.symptom_entities:
            category = ENTITY_AFFINITY.get(entity)
            if category in tied:
                hints[category] += 1
        if hints:
            ranked = hints.most_common()
            if len(ranked) == 1 or ranked[0][1] > ranked[1][1]:
                return ranked[0][0]
        return "general"


def fallback_triage(symptom_input: SymptomInput) -> TriageResult:
    """Conservative triage used when the classification backend is down."""
    tags = [tag.lower() for tag in symptom_input.quick_symptoms]
    urgent = symptom_input.urgency == "immediate" or any(
        marker in tag for tag in tags for marker in ("chest", "breath", "bleeding")
    )
    severity = HIGH if urgent else MEDIUM
    return TriageResult(
        severity=severity,
        confidence=50,
        detected_symptoms=tuple(
            DetectedSymptom(keyword=tag, severity="urgent" if urgent else "moderate", category="general")
            for tag in tags
        ),
        category="general",
        priority=compute_priority(severity, symptom_input),
        recommendations=FALLBACK_RECOMMENDATIONS,
        source="fallback",
    )


class RemoteClassifier:
    """Client for a triage service exposing ``POST /triage/analyze``."""

    def __init__(
        self,
        base_url: str,
        timeout: float = CLASSIFIER_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def classify(self, symptom_input: SymptomInput) -> TriageResult:
        try:
            response = self.client.post(
                f"{self.base_url}/triage/analyze",
                json=symptom_input_to_dict(symptom_input),
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            logger.warning("Triage service timed out: %s", exc)
            raise ClassifierUnavailable("Triage service timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning("Triage service returned %s", exc.response.status_code)
            raise ClassifierUnavailable(f"Triage service returned {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Triage service unreachable: %s", exc)
            raise ClassifierUnavailable("Triage service unreachable") from exc

        try:
            result = triage_from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise ClassifierUnavailable("Triage service returned a malformed result") from exc
        return replace(result, source="remote") if result.source == "keyword" else result

    def close(self) -> None:
        self.client.close()
