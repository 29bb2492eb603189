"""Keyword groups used by the semantic mapping strategy.

Each key is a canonical theme-name fragment; when any of its keywords
appears in a free-text label, the label resolves to the first active
theme whose name contains the fragment. Underscores in keys match
spaces in theme names. Groups are tried in the order listed.
"""

SEMANTIC_GROUPS = {
    "resilience": ["strength", "overcoming", "perseverance", "survival", "endurance", "recovery", "bounce back"],
    "community": ["support", "togetherness", "collective", "neighborhood", "social", "connection", "belonging",
                  "service", "volunteerism"],
    "identity": ["self", "who i am", "personal", "individual", "character", "personality", "authenticity"],
    "healing": ["recovery", "wellness", "therapy", "treatment", "getting better", "health", "restoration"],
    "wisdom": ["learning", "insight", "knowledge", "understanding", "life lessons", "experience", "growth"],
    "family": ["relatives", "parents", "children", "siblings", "kinship", "bloodline", "household"],
    "love": ["affection", "care", "romance", "partnership", "devotion", "attachment", "relationships"],
    "hope": ["optimism", "faith", "future", "possibility", "dreams", "aspirations", "belief"],
    "loss": ["grief", "death", "passing", "bereavement", "mourning", "missing", "absence"],
    "change": ["transformation", "transition", "evolution", "growth", "development", "adaptation"],
    "transformation": ["transition"],
    "courage": ["bravery", "fearlessness", "boldness", "valor", "heroism", "standing up"],
    "creativity": ["art", "expression", "imagination", "innovation", "artistic", "creative"],
    "justice": ["fairness", "equality", "rights", "advocacy", "activism", "social justice"],
    "environment": ["nature", "climate", "sustainability", "ecology", "conservation", "planet"],
    "violence": ["abuse", "assault", "harm", "aggression", "conflict", "trauma"],
    "poverty": ["financial hardship", "economic struggle", "money problems", "lack of resources", "homelessness"],
    "migration": ["moving", "relocation", "immigration", "displacement", "journey", "new country"],
    "gender": ["masculine", "feminine", "gender identity", "lgbtq", "sexuality"],
    "mental_health": ["depression", "anxiety", "mental illness", "psychological", "emotional wellbeing"],
    "innovation": ["technology", "invention", "breakthrough", "advancement", "progress"],
    "work": ["retirement", "career", "employment", "job", "profession"],
}


def normalize_fragment(key: str) -> str:
    """Group key as it should appear inside a theme name."""
    return key.replace("_", " ").strip().lower()
