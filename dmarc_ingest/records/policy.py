from dataclasses import dataclass, field
from enum import Enum
from typing import List


class Strength(Enum):
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"


@dataclass
class PolicyEvaluation:
    strength: Strength = Strength.STRONG
    recommendations: List[str] = field(default_factory=list)

    def downgrade(self, strength: Strength, recommendation: str):
        self.strength = strength
        self.recommendations.append(recommendation)

    def recommend(self, recommendation: str):
        self.recommendations.append(recommendation)
