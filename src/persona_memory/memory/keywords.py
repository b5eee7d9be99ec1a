"""
Keyword tables for memory categorization and importance scoring.

Tables are plain data keyed by language code so that word lists can be
swapped or extended without touching the categorizer. English and German
tables are functionally identical and differ only in their words.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class CategoryRule:
    """One ordered bucket: matching any keyword assigns group/subtopic.

    ``group`` may contain ``{subject}``, which is filled with CHARACTER or
    USER depending on whose fact is being filed.
    """

    bucket: str
    group: str
    subtopic: str
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class ScoringKeywords:
    important: tuple[str, ...]
    relationship: tuple[str, ...]
    preferences: tuple[str, ...]
    appearance: tuple[str, ...]


DEFAULT_TOPIC_GROUP = "CONVERSATION_THREADS"
DEFAULT_SUBTOPIC = "ongoing"


CATEGORY_RULES: dict[str, tuple[CategoryRule, ...]] = {
    "en": (
        CategoryRule(
            "appearance",
            "{subject}_IDENTITY",
            "appearance",
            (
                "wear", "wearing", "looks", "look", "appearance", "tall", "short", "hair",
                "hairstyle", "eyes", "dress", "shirt", "pants", "clothes", "clothing",
                "style", "fashion", "height", "face", "facial", "physical", "body", "build",
                "complexion", "skin", "makeup", "glasses", "attire", "outfit", "beard",
                "mustache", "features", "attractive", "handsome", "pretty", "beautiful",
                "tattoo", "piercing", "scar", "weight", "thin", "fat", "slender", "athletic",
            ),
        ),
        CategoryRule(
            "identity",
            "{subject}_IDENTITY",
            "core",
            (
                "name", "called", "age", "old", "young", "from", "origin", "nationality",
                "birthplace", "occupation", "work", "job", "profession", "career", "live",
                "lives", "living", "address", "residence", "hometown", "background",
                "education", "degree", "graduated", "studied", "identity", "gender",
                "pronouns", "ethnicity", "race", "cultural", "religion", "beliefs",
                "politics", "values", "personality", "character", "introvert", "extrovert",
                "citizen", "born", "heritage", "expertise", "skills", "talents",
                "languages", "speaks",
            ),
        ),
        CategoryRule(
            "preferences",
            "{subject}_IDENTITY",
            "preferences",
            (
                "like", "likes", "liked", "dislike", "dislikes", "disliked", "enjoy",
                "enjoys", "enjoyed", "hate", "hates", "hated", "prefer", "prefers",
                "preferred", "favorite", "favorites", "love", "loves", "loved", "adore",
                "adores", "adored", "passion", "passionate", "hobby", "hobbies", "interest",
                "interests", "fond", "appreciate", "appreciates", "pleasure", "desire",
                "wants", "wanted", "need", "needs", "wish", "wishes", "dream", "dreams",
                "taste", "tastes", "opinion", "opinions", "view", "views", "stance",
                "attitude", "choice", "genre", "music", "movie", "book", "food", "dish",
                "cuisine", "sport", "activity",
            ),
        ),
        CategoryRule(
            "relationship",
            "RELATIONSHIP",
            "dynamics",
            (
                "relationship", "relationships", "together", "feel about", "feel for",
                "feelings for", "trust", "trusts", "trusted", "dating", "date", "dates",
                "married", "marriage", "spouse", "partner", "girlfriend", "boyfriend",
                "wife", "husband", "fiancé", "fiancée", "engaged", "engagement", "ex",
                "divorced", "separated", "widow", "widower", "family", "families",
                "relative", "relatives", "parent", "parents", "mother", "father", "sister",
                "brother", "sibling", "siblings", "child", "children", "son", "daughter",
                "cousin", "aunt", "uncle", "niece", "nephew", "grandparent", "grandmother",
                "grandfather", "friend", "friends", "friendship", "colleague", "coworker",
                "acquaintance", "companion", "roommate", "connection", "bond", "affection",
                "intimate", "intimacy", "close", "closeness", "distance", "distant",
                "conflict", "argument", "tension", "supportive", "support",
            ),
        ),
    ),
    "de": (
        CategoryRule(
            "appearance",
            "{subject}_IDENTITY",
            "appearance",
            (
                "tragen", "trägt", "aussehen", "aussieht", "erscheinung", "groß", "klein",
                "haare", "frisur", "augen", "kleid", "hemd", "hose", "kleidung", "stil",
                "mode", "größe", "gesicht", "gesichts", "physisch", "körperlich", "körper",
                "statur", "teint", "haut", "schminke", "make-up", "brille", "outfit", "bart",
                "schnurrbart", "merkmale", "eigenschaften", "attraktiv", "hübsch", "schön",
                "gutaussehend", "tätowierung", "piercing", "narbe", "gewicht", "dünn",
                "dick", "schlank", "athletisch",
            ),
        ),
        CategoryRule(
            "identity",
            "{subject}_IDENTITY",
            "core",
            (
                "name", "heißt", "genannt", "alter", "jung", "alt", "jahr", "jahre",
                "herkunft", "nationalität", "geburtsort", "beruf", "arbeit", "job",
                "profession", "karriere", "wohnen", "wohnt", "lebt", "leben", "adresse",
                "wohnort", "heimatstadt", "hintergrund", "ausbildung", "studium",
                "abschluss", "studiert", "identität", "geschlecht", "pronomen",
                "ethnizität", "rasse", "kulturell", "religion", "glaube", "politik",
                "werte", "persönlichkeit", "charakter", "introvertiert", "extrovertiert",
                "bürger", "geboren", "erbe", "fachwissen", "fähigkeiten", "talente",
                "sprachen", "spricht",
            ),
        ),
        CategoryRule(
            "preferences",
            "{subject}_IDENTITY",
            "preferences",
            (
                "mag", "mögen", "gefällt", "gefallen", "genießt", "genießen", "hasst",
                "hassen", "bevorzugt", "bevorzugen", "lieblings", "liebt", "lieben",
                "anbetet", "anbeten", "leidenschaft", "leidenschaftlich", "hobby", "hobbys",
                "interesse", "interessen", "schätzt", "schätzen", "vergnügen", "wunsch",
                "will", "wollen", "wollte", "braucht", "brauchen", "wünscht", "wünschen",
                "traum", "träume", "geschmack", "meinung", "meinungen", "ansicht",
                "ansichten", "haltung", "einstellung", "wahl", "auswahl", "genre", "musik",
                "film", "buch", "essen", "gericht", "küche", "sport", "aktivität",
            ),
        ),
        CategoryRule(
            "relationship",
            "RELATIONSHIP",
            "dynamics",
            (
                "beziehung", "beziehungen", "zusammen", "fühlt für", "fühlt über",
                "gefühle für", "vertrauen", "vertraut", "liebe", "dating", "date", "dates",
                "verheiratet", "ehe", "ehepartner", "partner", "partnerin", "freundin",
                "freund", "ehefrau", "ehemann", "verlobt", "verlobung", "verlobte",
                "verlobter", "ex", "geschieden", "getrennt", "witwe", "witwer", "familie",
                "familien", "verwandte", "verwandter", "eltern", "elternteil", "mutter",
                "vater", "schwester", "bruder", "geschwister", "kind", "kinder", "sohn",
                "tochter", "cousin", "cousine", "tante", "onkel", "nichte", "neffe",
                "großeltern", "großmutter", "oma", "großvater", "opa", "freundschaft",
                "kollege", "kollegin", "mitarbeiter", "bekannte", "begleiter",
                "mitbewohner", "verbindung", "bindung", "zuneigung", "intim", "intimität",
                "nah", "nähe", "distanz", "distanziert", "konflikt", "streit", "spannung",
                "unterstützend", "unterstützung",
            ),
        ),
    ),
}


SCORING_KEYWORDS: dict[str, ScoringKeywords] = {
    "en": ScoringKeywords(
        important=("name", "birthday", "significant", "important"),
        relationship=("family", "friend", "relationship", "feel"),
        preferences=("like", "dislike", "prefer", "enjoy"),
        appearance=(
            "wear", "look", "tall", "short", "hair", "eyes", "dress", "shirt", "pants",
            "clothes", "style", "height", "face", "physical",
        ),
    ),
    "de": ScoringKeywords(
        important=("name", "geburtstag", "bedeutend", "wichtig"),
        relationship=("familie", "freund", "beziehung", "fühlen"),
        preferences=("mag", "gefällt", "liebt", "bevorzugt", "genießt"),
        appearance=(
            "tragen", "aussehen", "groß", "klein", "haare", "augen", "kleid", "hemd",
            "hose", "kleidung", "stil", "größe", "gesicht", "physisch", "körperlich",
        ),
    ),
}


# Legacy flat categories, used when no memory carries topic metadata
LEGACY_CATEGORY_ORDER = (
    "PERSONAL",
    "BACKGROUND",
    "RELATIONSHIPS",
    "CONVERSATION",
    "OTHER",
    "FACTUAL",
    "PREFERENCES",
)

LEGACY_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("PREFERENCES", ("like", "enjoy", "prefer")),
    ("PERSONAL", ("name", "age", "childhood")),
)
