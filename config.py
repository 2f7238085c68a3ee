"""
Configuration module for Bedrock Relay.
Handles environment variables, model settings, and application settings.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    return [s.strip() for s in os.getenv(name, "").split(",") if s.strip()]


@dataclass
class AWSConfig:
    """AWS-specific configuration"""
    region: str = field(default_factory=lambda: os.getenv("AWS_REGION", "us-east-1"))
    access_key_id: str = field(default_factory=lambda: os.getenv("AWS_ACCESS_KEY_ID", ""))
    secret_access_key: str = field(default_factory=lambda: os.getenv("AWS_SECRET_ACCESS_KEY", ""))
    session_token: str = field(default_factory=lambda: os.getenv("AWS_SESSION_TOKEN", ""))
    profile_name: str = field(default_factory=lambda: os.getenv("AWS_PROFILE", ""))

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Model-specific configuration"""
    model_id: str = field(default_factory=lambda: os.getenv(
        "BEDROCK_MODEL_ID", "us.anthropic.claude-sonnet-4-5-20250929-v1:0"))
    # Lightweight model for one-line commit messages
    commit_model_id: str = field(default_factory=lambda: os.getenv(
        "COMMIT_MODEL_ID", "us.anthropic.claude-haiku-4-5-20251001-v1:0"))
    max_tokens: int = field(default_factory=lambda: int(os.getenv("MAX_TOKENS", "16000")))
    temperature: Optional[float] = field(default_factory=lambda: (
        float(os.getenv("TEMPERATURE", "")) if os.getenv("TEMPERATURE") else None))
    enable_thinking: bool = field(default_factory=lambda: _env_bool("ENABLE_THINKING", "false"))
    thinking_budget: int = field(default_factory=lambda: int(os.getenv("THINKING_BUDGET", "8000")))
    # Coding turns are slow: minutes, not seconds
    read_timeout: int = field(default_factory=lambda: int(os.getenv("BEDROCK_READ_TIMEOUT", "600")))


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Bedrock Relay"
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    workspace_dir: str = field(default_factory=lambda: os.getenv("WORKSPACE_DIR", ""))
    store_dir: str = field(default_factory=lambda: os.getenv(
        "STORE_DIR", os.path.join(os.path.expanduser("~"), ".bedrock-relay")))
    # Disables the path sandbox, protected-file denylist and shell denylist
    unsafe_mode: bool = field(default_factory=lambda: _env_bool("UNSAFE_MODE"))
    allowed_conversation_ids: List[str] = field(
        default_factory=lambda: _env_list("ALLOWED_CONVERSATION_IDS"))
    max_turns: int = field(default_factory=lambda: int(os.getenv("MAX_TURNS", "10")))
    history_limit: int = field(default_factory=lambda: int(os.getenv("HISTORY_LIMIT", "20")))
    stream_flush_interval: float = field(default_factory=lambda: float(os.getenv("STREAM_FLUSH_INTERVAL", "1.0")))
    queue_poll_interval: float = field(default_factory=lambda: float(os.getenv("QUEUE_POLL_INTERVAL", "60")))
    heartbeat_stale_seconds: float = field(default_factory=lambda: float(os.getenv("HEARTBEAT_STALE_SECONDS", "90")))
    shell_timeout: int = field(default_factory=lambda: int(os.getenv("SHELL_TIMEOUT", "120")))
    git_author_name: str = field(default_factory=lambda: os.getenv("GIT_AUTHOR_NAME", "Bedrock Relay"))
    git_author_email: str = field(default_factory=lambda: os.getenv("GIT_AUTHOR_EMAIL", "relay@localhost"))

    def resolve_workspace(self) -> str:
        """Workspace root: WORKSPACE_DIR override, else the process CWD."""
        return os.path.abspath(os.path.expanduser(self.workspace_dir or os.getcwd()))

    def is_allowed(self, conversation_id: str) -> bool:
        if not self.allowed_conversation_ids:
            return True
        return str(conversation_id) in self.allowed_conversation_ids


def load_app_config() -> AppConfig:
    """Build an AppConfig from the current environment."""
    return AppConfig()


# Create global config instances
aws_config = AWSConfig()
model_config = ModelConfig()


def get_credentials_info() -> str:
    if aws_config.has_profile():
        return f"Using AWS profile: {aws_config.profile_name}"
    elif aws_config.has_explicit_credentials():
        if aws_config.has_session_token():
            return "Using temporary credentials (with session token)"
        return "Using explicit credentials"
    return "Using default AWS credential chain"
