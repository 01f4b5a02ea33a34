import os
from dataclasses import dataclass
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default) == "1"


# ============================================================================#
# ENVIRONMENT / SERVICES
# ============================================================================#
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
PLANTID_API_KEY = os.getenv("PLANTID_API_KEY")
PLANTID_BASE_URL = os.getenv("PLANTID_BASE_URL", "https://plant.id/api/v3")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# LLM models
LLM_MODEL_ADVISORY = os.getenv("LLM_MODEL_ADVISORY", "gpt-4o-mini")
LLM_MODEL_TRANSLATION = os.getenv("LLM_MODEL_TRANSLATION", "gpt-4o-mini")
LLM_MODEL_TEXT_IDENTIFICATION = os.getenv("LLM_MODEL_TEXT_IDENTIFICATION", "gpt-4o-mini")

# Pre-check spends one Plant.id call per image; off unless set to "1"
IMAGE_VALIDATION_ENABLED = env_flag("IMAGE_VALIDATION_ENABLED", "0")
ADVISORY_ENABLED = env_flag("ADVISORY_ENABLED", "1")

# Rate limiting (slowapi syntax)
ANALYZE_RATE_LIMIT = os.getenv("ANALYZE_RATE_LIMIT", "30/minute")

# ============================================================================#
# TIMEOUTS (seconds)
# ============================================================================#
IMAGE_FETCH_TIMEOUT = 15
RECOGNITION_TIMEOUT = 30
TRANSLATION_TIMEOUT = 10
TREATMENT_LOOKUP_TIMEOUT = 10
ADVISORY_TIMEOUT = 45
CARE_TIMEOUT = 10
PERSISTENCE_TIMEOUT = 10

# ============================================================================#
# LIMITS
# ============================================================================#
TEXT_MIN_LENGTH = 3
TEXT_MAX_LENGTH = 500
RELIABLE_CONFIDENCE_THRESHOLD = 0.5
MAX_PLANT_SUGGESTIONS = 5
MAX_DISEASE_SUGGESTIONS = 3
MAX_CHEMICAL_PRODUCTS = 5
MAX_BIOLOGICAL_METHODS = 5
MAX_CULTURAL_PRACTICES = 10


@dataclass(frozen=True)
class AnalysisSettings:
    """Per-deployment switches handed to the orchestrator at construction."""
    image_validation_enabled: bool = IMAGE_VALIDATION_ENABLED
    advisory_enabled: bool = ADVISORY_ENABLED
    text_min_length: int = TEXT_MIN_LENGTH
    text_max_length: int = TEXT_MAX_LENGTH
    reliable_threshold: float = RELIABLE_CONFIDENCE_THRESHOLD
    max_diseases: int = MAX_DISEASE_SUGGESTIONS
    recognition_timeout: float = RECOGNITION_TIMEOUT
    translation_timeout: float = TRANSLATION_TIMEOUT
    treatment_timeout: float = TREATMENT_LOOKUP_TIMEOUT
    advisory_timeout: float = ADVISORY_TIMEOUT
    care_timeout: float = CARE_TIMEOUT
    persistence_timeout: float = PERSISTENCE_TIMEOUT

    @classmethod
    def from_env(cls) -> "AnalysisSettings":
        return cls(
            image_validation_enabled=env_flag("IMAGE_VALIDATION_ENABLED", "0"),
            advisory_enabled=env_flag("ADVISORY_ENABLED", "1"),
        )
