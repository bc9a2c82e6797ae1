"""Pipeline configuration — providers, per-stage model assignments, QC and research budgets."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
ROOT_DIR = Path(__file__).parent
OUTPUT_DIR = ROOT_DIR / os.getenv("OUTPUT_DIR", "outputs")

# ---------------------------------------------------------------------------
# Provider API Keys
# ---------------------------------------------------------------------------
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")
PERPLEXITY_API_KEY = os.getenv("PERPLEXITY_API_KEY", "")
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
KLING_ACCESS_KEY = os.getenv("KLING_ACCESS_KEY", "")
KLING_SECRET_KEY = os.getenv("KLING_SECRET_KEY", "")

# Deterministic stand-ins for every capability (local dev + tests).
FORCE_MOCK_PROVIDERS = os.getenv("FORCE_MOCK_PROVIDERS", "")

# ---------------------------------------------------------------------------
# Model names (centralized so they're easy to update)
# ---------------------------------------------------------------------------
OPENAI_FRONTIER = "gpt-5.2"
GOOGLE_FRONTIER = "gemini-2.5-pro"
ANTHROPIC_FRONTIER = "claude-opus-4-6"
ANTHROPIC_ITERATE = "claude-sonnet-4-5"

GEMINI_IMAGE_MODEL = os.getenv("GEMINI_IMAGE_MODEL", "gemini-3-pro-image-preview")
VISION_MODEL = os.getenv("VISION_MODEL", OPENAI_FRONTIER)
VISION_PROVIDER = os.getenv("VISION_PROVIDER", "anthropic")

PERPLEXITY_SEARCH_MODEL = os.getenv("PERPLEXITY_SEARCH_MODEL", "sonar-deep-research")
PERPLEXITY_BASE_URL = os.getenv("PERPLEXITY_BASE_URL", "https://api.perplexity.ai")

ELEVENLABS_BASE_URL = os.getenv("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io/v1")
ELEVENLABS_DEFAULT_VOICE_ID = os.getenv("ELEVENLABS_DEFAULT_VOICE_ID", "21m00Tcm4TlvDq8ikWAM")
ELEVENLABS_MODEL_ID = os.getenv("ELEVENLABS_MODEL_ID", "eleven_multilingual_v2")
ELEVENLABS_COST_PER_1K_CHARS = float(os.getenv("ELEVENLABS_COST_PER_1K_CHARS", "0.30"))

KLING_BASE_URL = os.getenv("KLING_BASE_URL", "https://api.klingai.com")
KLING_MODEL_NAME = os.getenv("KLING_MODEL_NAME", "kling-v2-master")

# ---------------------------------------------------------------------------
# Per-Stage Model Assignments
#
# Each stage can specify: provider, model, temperature, max_tokens.
# Providers: "openai", "anthropic", "google"
# Override any stage via env: SCRIPT_PROVIDER=openai
#                             SCRIPT_MODEL=gpt-5.2
# ---------------------------------------------------------------------------

DEFAULT_PROVIDER = os.getenv("DEFAULT_PROVIDER", "anthropic")
DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", ANTHROPIC_FRONTIER)

STAGE_LLM_CONFIG: dict[str, dict] = {
    # Fresh per-field generation (descriptions, hooks, scripts, character prompts)
    "generate": {
        "provider": os.getenv("GENERATE_PROVIDER", DEFAULT_PROVIDER),
        "model": os.getenv("GENERATE_MODEL", ANTHROPIC_FRONTIER),
        "temperature": 0.8,
        "max_tokens": 4_000,
    },
    # Iterations and prompt corrections — cheaper model
    "iterate": {
        "provider": os.getenv("ITERATE_PROVIDER", DEFAULT_PROVIDER),
        "model": os.getenv("ITERATE_MODEL", ANTHROPIC_ITERATE),
        "temperature": 0.7,
        "max_tokens": 4_000,
    },
    # Single-call research synthesis: big structured output
    "research": {
        "provider": os.getenv("RESEARCH_PROVIDER", DEFAULT_PROVIDER),
        "model": os.getenv("RESEARCH_MODEL", ANTHROPIC_FRONTIER),
        "temperature": 0.6,
        "max_tokens": 16_000,
    },
    # Script chunking: mechanical
    "script": {
        "provider": os.getenv("SCRIPT_PROVIDER", DEFAULT_PROVIDER),
        "model": os.getenv("SCRIPT_MODEL", ANTHROPIC_ITERATE),
        "temperature": 0.3,
        "max_tokens": 4_000,
    },
    # Edit assembly: editing guide and timeline from finished clips
    "assembly": {
        "provider": os.getenv("ASSEMBLY_PROVIDER", "google"),
        "model": os.getenv("ASSEMBLY_MODEL", GOOGLE_FRONTIER),
        "temperature": 0.7,
        "max_tokens": 8_192,
    },
}


def get_stage_llm_config(stage_slug: str) -> dict:
    """Return the LLM config for a specific stage, with defaults."""
    defaults = {
        "provider": DEFAULT_PROVIDER,
        "model": DEFAULT_MODEL,
        "temperature": 0.7,
        "max_tokens": 16_000,
    }
    stage_conf = STAGE_LLM_CONFIG.get(stage_slug, {})
    return {**defaults, **stage_conf}


# ---------------------------------------------------------------------------
# Quality control loop
# ---------------------------------------------------------------------------
QC_MAX_RETRIES = int(os.getenv("QC_MAX_RETRIES", "2"))
QC_THRESHOLD_CHARACTER = int(os.getenv("QC_THRESHOLD_CHARACTER", "80"))
QC_THRESHOLD_BROLL = int(os.getenv("QC_THRESHOLD_BROLL", "75"))
QC_THRESHOLD_DEFAULT = int(os.getenv("QC_THRESHOLD_DEFAULT", "80"))
# passed=false with no issues and no adjusted prompt: accept instead of retrying unchanged
QC_FORCE_ACCEPT_WITHOUT_GUIDANCE = (
    os.getenv("QC_FORCE_ACCEPT_WITHOUT_GUIDANCE", "true").strip().lower() in {"1", "true", "yes", "on"}
)

# Independent segments may be rendered concurrently.
SEGMENT_MAX_PARALLEL = int(os.getenv("SEGMENT_MAX_PARALLEL", "3"))

# ---------------------------------------------------------------------------
# Research synthesis
# ---------------------------------------------------------------------------
RESEARCH_DOC_CHAR_BUDGET = int(os.getenv("RESEARCH_DOC_CHAR_BUDGET", "8000"))
RESEARCH_MAX_DOCUMENTS = int(os.getenv("RESEARCH_MAX_DOCUMENTS", "10"))
RESEARCH_LIST_CAP = int(os.getenv("RESEARCH_LIST_CAP", "20"))
RESEARCH_LANGUAGE_CAP = int(os.getenv("RESEARCH_LANGUAGE_CAP", "25"))
RESEARCH_TRANSFORMATION_CAP = int(os.getenv("RESEARCH_TRANSFORMATION_CAP", "10"))

# ---------------------------------------------------------------------------
# Async video + HTTP
# ---------------------------------------------------------------------------
VIDEO_POLL_INTERVAL_SECONDS = float(os.getenv("VIDEO_POLL_INTERVAL_SECONDS", "5"))
VIDEO_MAX_WAIT_SECONDS = float(os.getenv("VIDEO_MAX_WAIT_SECONDS", "300"))
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "60"))
SEARCH_TIMEOUT_SECONDS = float(os.getenv("SEARCH_TIMEOUT_SECONDS", "600"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "600"))

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
DB_PATH = ROOT_DIR / os.getenv("PROJECT_DB", "ugc_factory.db")

# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Ensure output dir exists
OUTPUT_DIR.mkdir(exist_ok=True)
