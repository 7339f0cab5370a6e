"""
Configuration module for TermAI Orchestrator.
Handles environment variables, model specifications, application and agent settings.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class AWSConfig:
    """AWS credentials and region for the Bedrock client"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Default model and sampling for step and decision calls"""
    model_id: str = os.getenv("BEDROCK_MODEL_ID", "us.anthropic.claude-sonnet-4-5-20250929-v1:0")
    decision_model_id: str = os.getenv("DECISION_MODEL_ID", "")
    max_tokens: int = int(os.getenv("MAX_TOKENS", "16000"))
    decision_max_tokens: int = int(os.getenv("DECISION_MAX_TOKENS", "1024"))
    throughput_mode: str = os.getenv("THROUGHPUT_MODE", "cross-region")


@dataclass
class AppConfig:
    """Process-wide settings: logging, timeouts, session storage"""
    title: str = "TermAI Orchestrator"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "termai_orchestrator.log")
    debug_mode: bool = _env_bool("DEBUG_MODE", "false")
    working_directory: str = os.getenv("WORKING_DIRECTORY", ".")
    sessions_dir: str = os.getenv(
        "SESSIONS_DIR", os.path.join(os.path.expanduser("~"), ".termai-orchestrator", "sessions")
    )
    # Upper bound for a single LLM call, seconds
    llm_call_timeout: float = float(os.getenv("LLM_CALL_TIMEOUT", "180"))
    # One-shot decision prompts: bounded attempts with linear backoff
    decision_max_retries: int = int(os.getenv("DECISION_MAX_RETRIES", "3"))
    decision_retry_delay: float = float(os.getenv("DECISION_RETRY_DELAY", "1.0"))
    # Debounce window for session writes
    save_debounce_seconds: float = float(os.getenv("SAVE_DEBOUNCE_SECONDS", "1.0"))
    # Illegal phase transitions raise instead of being logged and forced
    strict_phase_transitions: bool = _env_bool("STRICT_PHASE_TRANSITIONS", "false")

    @property
    def effective_log_level(self) -> int:
        """DEBUG_MODE forces DEBUG; otherwise LOG_LEVEL, falling back to INFO."""
        if self.debug_mode:
            return logging.DEBUG
        return getattr(logging, self.log_level.upper(), logging.INFO)


DEFAULT_BLOCKED_COMMAND_PATTERNS: List[str] = [
    "rm -rf /",
    "rm -rf ~",
    "rm -rf *",
    "sudo ",
    "chmod 777",
    "chmod -R 777",
    "git push --force",
    "git push -f",
    "git reset --hard",
    "git clean -fd",
    "dd if=",
    "mkfs",
    ":(){ :|:& };:",
    "kill -9 1",
    "killall",
    "shutdown",
    "reboot",
    "DROP TABLE",
    "DROP DATABASE",
    "DELETE FROM",
    "TRUNCATE TABLE",
]


@dataclass
class AgentSettings:
    """Agent loop, context budget, approval and safety settings"""
    # Loop limits (0 = unlimited iterations)
    max_iterations: int = int(os.getenv("AGENT_MAX_ITERATIONS", "100"))
    max_tool_calls_per_step: int = int(os.getenv("AGENT_MAX_TOOL_CALLS_PER_STEP", "100"))
    max_fix_attempts: int = int(os.getenv("AGENT_MAX_FIX_ATTEMPTS", "3"))
    command_timeout: int = int(os.getenv("AGENT_COMMAND_TIMEOUT", "300"))

    # Context budget, as fractions of the model context (in chars) with floors and caps
    output_capture_percent: float = float(os.getenv("AGENT_OUTPUT_CAPTURE_PERCENT", "0.15"))
    agent_memory_percent: float = float(os.getenv("AGENT_MEMORY_PERCENT", "0.40"))
    max_output_capture_cap: int = int(os.getenv("AGENT_MAX_OUTPUT_CAPTURE", "50000"))
    max_agent_memory_cap: int = int(os.getenv("AGENT_MAX_MEMORY", "100000"))
    min_output_capture: int = int(os.getenv("AGENT_MIN_OUTPUT_CAPTURE", "8000"))
    min_context_size: int = int(os.getenv("AGENT_MIN_CONTEXT_SIZE", "16000"))
    output_summarization_threshold: int = int(os.getenv("AGENT_OUTPUT_SUMMARIZATION_THRESHOLD", "10000"))
    enable_output_summarization: bool = _env_bool("AGENT_ENABLE_OUTPUT_SUMMARIZATION", "true")
    # 0 = use the model's own context window
    context_limit_override: int = int(os.getenv("CONTEXT_LIMIT_OVERRIDE", "0"))

    # Planning, reflection, stuck detection, verification
    enable_planning: bool = _env_bool("AGENT_ENABLE_PLANNING", "true")
    reflection_interval: int = int(os.getenv("AGENT_REFLECTION_INTERVAL", "10"))
    enable_reflection: bool = _env_bool("AGENT_ENABLE_REFLECTION", "true")
    stuck_detection_threshold: int = int(os.getenv("AGENT_STUCK_THRESHOLD", "3"))
    stuck_similarity_threshold: float = float(os.getenv("AGENT_STUCK_SIMILARITY", "0.7"))
    enable_verification_phase: bool = _env_bool("AGENT_ENABLE_VERIFICATION", "true")

    # File coordination and sampling
    file_lock_timeout: float = float(os.getenv("AGENT_FILE_LOCK_TIMEOUT", "30"))
    agent_temperature: float = float(os.getenv("AGENT_TEMPERATURE", "0.2"))

    # Approvals (approval_timeout 0 = wait indefinitely)
    require_command_approval: bool = _env_bool("AGENT_REQUIRE_COMMAND_APPROVAL", "false")
    auto_approve_read_only: bool = _env_bool("AGENT_AUTO_APPROVE_READ_ONLY", "true")
    require_file_edit_approval: bool = _env_bool("AGENT_REQUIRE_FILE_EDIT_APPROVAL", "false")
    approval_timeout: float = float(os.getenv("AGENT_APPROVAL_TIMEOUT", "0"))

    blocked_command_patterns: List[str] = field(
        default_factory=lambda: list(DEFAULT_BLOCKED_COMMAND_PATTERNS)
    )

    def effective_output_capture_limit(self, context_tokens: int) -> int:
        """Characters of command/tool output kept per entry, scaled to the context size."""
        chars = context_tokens * 4
        scaled = int(chars * self.output_capture_percent)
        return min(max(scaled, self.min_output_capture), self.max_output_capture_cap)

    def effective_agent_memory_limit(self, context_tokens: int) -> int:
        """Characters of working memory (context log) kept, scaled to the context size."""
        chars = context_tokens * 4
        scaled = int(chars * self.agent_memory_percent)
        return min(max(scaled, self.min_context_size), self.max_agent_memory_cap)

    def is_command_blocked(self, command: str) -> Optional[str]:
        """Return the matching blocked pattern for a shell command, or None."""
        lowered = (command or "").lower()
        for pattern in self.blocked_command_patterns:
            if pattern and pattern.lower() in lowered:
                return pattern
        return None


# ============================================================
# Model Specifications -- Anthropic Claude on Bedrock
# All listed models support tool_use, which the step loop requires.
# ============================================================
AVAILABLE_MODELS: List[Dict[str, Any]] = [
    {
        "id": "us.anthropic.claude-opus-4-5-20251101-v1:0",
        "base_id": "anthropic.claude-opus-4-5-20251101-v1:0",
        "name": "Claude Opus 4.5",
        "provider": "anthropic",
        "context_window": 200000,
        "max_output_tokens": 64000,
        "supports_tools": True,
        "requires_profile": True,
    },
    {
        "id": "us.anthropic.claude-sonnet-4-5-20250929-v1:0",
        "base_id": "anthropic.claude-sonnet-4-5-20250929-v1:0",
        "name": "Claude Sonnet 4.5",
        "provider": "anthropic",
        "context_window": 200000,
        "max_output_tokens": 64000,
        "supports_tools": True,
        "requires_profile": True,
    },
    {
        "id": "us.anthropic.claude-haiku-4-5-20251001-v1:0",
        "base_id": "anthropic.claude-haiku-4-5-20251001-v1:0",
        "name": "Claude Haiku 4.5",
        "provider": "anthropic",
        "context_window": 200000,
        "max_output_tokens": 64000,
        "supports_tools": True,
        "requires_profile": True,
    },
    {
        "id": "us.anthropic.claude-sonnet-4-20250514-v1:0",
        "base_id": "anthropic.claude-sonnet-4-20250514-v1:0",
        "name": "Claude Sonnet 4",
        "provider": "anthropic",
        "context_window": 200000,
        "max_output_tokens": 64000,
        "supports_tools": True,
        "requires_profile": True,
    },
    {
        "id": "anthropic.claude-3-5-haiku-20241022-v1:0",
        "base_id": "anthropic.claude-3-5-haiku-20241022-v1:0",
        "name": "Claude 3.5 Haiku",
        "provider": "anthropic",
        "context_window": 200000,
        "max_output_tokens": 8192,
        "supports_tools": True,
        "requires_profile": False,
    },
]


# Create global config instances
aws_config = AWSConfig()
model_config = ModelConfig()
app_config = AppConfig()
agent_settings = AgentSettings()


def get_model_by_id(model_id: str) -> Optional[Dict[str, Any]]:
    """Model table entry for an inference profile or base model ID"""
    for model in AVAILABLE_MODELS:
        if model["id"] == model_id or model.get("base_id") == model_id:
            return model
    return None


def get_model_name(model_id: str) -> str:
    """Human-readable model name, or the ID itself if unknown"""
    model = get_model_by_id(model_id)
    return model["name"] if model else model_id


def get_context_window(model_id: str) -> Optional[int]:
    """Context window from the model table, or None for models not listed."""
    model = get_model_by_id(model_id)
    return model.get("context_window") if model else None


def get_max_output_tokens(model_id: str) -> int:
    model = get_model_by_id(model_id)
    return model.get("max_output_tokens", 4096) if model else 4096


def requires_inference_profile(model_id: str) -> bool:
    model = get_model_by_id(model_id)
    return bool(model and model.get("requires_profile", False))


def supports_tools(model_id: str) -> bool:
    model = get_model_by_id(model_id)
    return model.get("supports_tools", True) if model else True


def get_credentials_info() -> str:
    if aws_config.has_profile():
        return f"Using AWS profile: {aws_config.profile_name}"
    elif aws_config.has_explicit_credentials():
        if aws_config.has_session_token():
            return "Using temporary credentials (with session token)"
        return "Using explicit credentials"
    return "Using default AWS credential chain"
