"""
Specialty Mapper — routes a diagnosis to the department that should see it.

A keyword table covers the common cases without a model call; anything it
cannot place is put to the model as a closed-list question and the answer
is checked against the known departments.
"""

from __future__ import annotations

import logging

from medinet.gateway.agents.llm_utils import CompletionClient, CompletionError
from medinet.gateway.outcomes import Disease

logger = logging.getLogger("gateway.agents.specialty")

GENERAL_MEDICINE = "General Medicine"

VALID_SPECIALTIES: list[str] = [
    "General Medicine",
    "Cardiology",
    "Dermatology",
    "Orthopedics",
    "Neurology",
    "Gastroenterology",
    "Pulmonology",
    "Pediatrics",
    "Psychiatry",
    "ENT",
]

# Keyword → specialty.  Scanned in insertion order; first substring hit wins.
DISEASE_SPECIALTY_MAP: dict[str, str] = {
    "hypertension": "Cardiology",
    "heart attack": "Cardiology",
    "arrhythmia": "Cardiology",
    "chest pain": "Cardiology",
    "coronary artery disease": "Cardiology",
    "eczema": "Dermatology",
    "psoriasis": "Dermatology",
    "acne": "Dermatology",
    "skin rash": "Dermatology",
    "allergic reaction": "Dermatology",
    "fracture": "Orthopedics",
    "arthritis": "Orthopedics",
    "back pain": "Orthopedics",
    "joint pain": "Orthopedics",
    "sprain": "Orthopedics",
    "migraine": "Neurology",
    "seizure": "Neurology",
    "stroke": "Neurology",
    "headache": "Neurology",
    "neuropathy": "Neurology",
    "gastritis": "Gastroenterology",
    "ibs": "Gastroenterology",
    "ulcer": "Gastroenterology",
    "constipation": "Gastroenterology",
    "diarrhea": "Gastroenterology",
    "asthma": "Pulmonology",
    "copd": "Pulmonology",
    "pneumonia": "Pulmonology",
    "bronchitis": "Pulmonology",
    "respiratory infection": "Pulmonology",
    "depression": "Psychiatry",
    "anxiety": "Psychiatry",
    "panic attack": "Psychiatry",
    "insomnia": "Psychiatry",
    "bipolar disorder": "Psychiatry",
    "sinusitis": "ENT",
    "ear infection": "ENT",
    "tonsillitis": "ENT",
    "hearing loss": "ENT",
    "vertigo": "ENT",
    "fever": GENERAL_MEDICINE,
    "common cold": GENERAL_MEDICINE,
    "flu": GENERAL_MEDICINE,
    "fatigue": GENERAL_MEDICINE,
}

SPECIALTY_DESCRIPTIONS: dict[str, str] = {
    "General Medicine": "Handles common health conditions and provides primary care",
    "Cardiology": "Specializes in heart and cardiovascular conditions",
    "Dermatology": "Focuses on skin, hair, and nail disorders",
    "Orthopedics": "Treats bone, joint, and musculoskeletal issues",
    "Neurology": "Deals with brain, spine, and nervous system disorders",
    "Gastroenterology": "Specializes in digestive system and related organs",
    "Pulmonology": "Focuses on respiratory system and lung conditions",
    "Pediatrics": "Specialized care for infants, children, and adolescents",
    "Psychiatry": "Addresses mental health and behavioral disorders",
    "ENT": "Treats ear, nose, and throat conditions",
}

SPECIALTY_SYSTEM_PROMPT = """\
You are a medical specialty classifier. Given diseases, map them to the most
appropriate medical specialty:
- General Medicine: Common conditions, fever, infections
- Cardiology: Heart, blood pressure, chest pain
- Dermatology: Skin, rashes, allergies
- Orthopedics: Bones, joints, fractures
- Neurology: Headaches, seizures, nerve issues
- Gastroenterology: Digestive issues, stomach pain
- Pulmonology: Breathing, cough, lungs
- Psychiatry: Mental health, anxiety, depression
- ENT: Ear, nose, throat issues
- Pediatrics: Children-specific conditions

Return only the specialty name."""


class SpecialtyResolver:

    def __init__(self, completion: CompletionClient) -> None:
        self._completion = completion

    async def resolve(self, diseases: list[Disease]) -> str:
        if not diseases:
            return GENERAL_MEDICINE

        by_rule = self.rule_based(diseases)
        if by_rule is not None:
            logger.info("Specialty from keyword table: %s", by_rule)
            return by_rule

        names = ", ".join(d.name for d in diseases)
        prompt = (
            f"Map these diseases to the most appropriate medical specialty: {names}\n\n"
            f"Choose exactly one of: {', '.join(VALID_SPECIALTIES)}.\n"
            "Only respond with the specialty name, nothing else."
        )
        try:
            answer = await self._completion.complete(prompt, SPECIALTY_SYSTEM_PROMPT)
        except CompletionError as exc:
            logger.warning("Specialty completion failed, defaulting: %s", exc)
            return GENERAL_MEDICINE

        specialty = self.validate(answer)
        logger.info("Specialty from model: %r -> %s", answer.strip(), specialty)
        return specialty

    @staticmethod
    def rule_based(diseases: list[Disease]) -> str | None:
        """Keyword match on the most confident disease; General Medicine is no hit."""
        primary = max(diseases, key=lambda d: d.confidence)
        name = primary.name.lower()
        for keyword, specialty in DISEASE_SPECIALTY_MAP.items():
            if keyword in name:
                return None if specialty == GENERAL_MEDICINE else specialty
        return None

    @staticmethod
    def validate(answer: str) -> str:
        candidate = answer.strip().lower()
        for valid in VALID_SPECIALTIES:
            if valid.lower() == candidate:
                return valid
        return GENERAL_MEDICINE

    @staticmethod
    def describe(specialty: str) -> str:
        return SPECIALTY_DESCRIPTIONS.get(
            specialty, SPECIALTY_DESCRIPTIONS[GENERAL_MEDICINE]
        )
