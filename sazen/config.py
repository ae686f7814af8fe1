"""Configuration management for the browser action engine."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict


class StabilityProfile(str, Enum):
    """Coarse tuning for the post-action stability wait."""
    FAST = "fast"
    BALANCED = "balanced"
    CHATTY = "chatty"  # Pages with constant background traffic


class ScreenshotMode(str, Enum):
    """Screenshot capture area."""
    VIEWPORT = "viewport"
    FULLPAGE = "fullpage"


class RedactionPack(str, Enum):
    """Built-in secret redaction rule sets for observed events."""
    DEFAULT = "default"
    STRICT = "strict"
    OFF = "off"


# Deterministic environment injected into every browser context
DETERMINISTIC_SEED = 1337
DETERMINISTIC_FIXED_TIME_MS = 1_735_689_600_000


class SessionOptions(BaseModel):
    """Options for a single browser session.

    Accepts snake_case or camelCase keys; serializes with camelCase so the
    options can be stored verbatim inside a saved trace.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        use_enum_values=True,
    )

    headed: bool = Field(False, description="Show the browser window")
    browser_overlay: bool = Field(False, description="Inject in-page pause/resume control")
    deterministic: bool = Field(True, description="Freeze clock/RNG and disable animations")
    slow_mo_ms: int = Field(0, ge=0, description="Delay between provider operations")
    stability_profile: StabilityProfile = Field(StabilityProfile.BALANCED)
    screenshot_mode: ScreenshotMode = Field(ScreenshotMode.VIEWPORT)
    annotate_screenshots: bool = Field(True, description="Draw resolved target on screenshots")
    redaction_pack: RedactionPack = Field(RedactionPack.DEFAULT)
    viewport_width: int = Field(1440, gt=0)
    viewport_height: int = Field(920, gt=0)
    action_timeout_ms: int = Field(10_000, gt=0, description="Default per-action timeout")
    stable_wait_ms: int = Field(120, ge=0, description="Base quiet window after each action")
    capture_screenshots: bool = Field(True)
    artifacts_dir: str = Field(".agent-browser/artifacts")
    max_action_attempts: int = Field(1, ge=1, description="Attempts for retryable failures")
    retry_backoff_ms: int = Field(0, ge=0, description="Wait between retry attempts")
    storage_state_path: Optional[str] = Field(None, description="Storage state to preload")
    log_noise_filtering: bool = Field(True, description="Drop favicon/autocomplete chatter")

    def merged(self, **overrides: Any) -> "SessionOptions":
        """Return a copy with the given (snake_case or camelCase) overrides applied."""
        aliases = {name: field.alias or name for name, field in SessionOptions.model_fields.items()}
        data = self.model_dump(by_alias=True)
        for key, value in overrides.items():
            data[aliases.get(key, key)] = value
        return SessionOptions.model_validate(data)

    def to_trace_dict(self) -> dict[str, Any]:
        """Serialize for a saved trace."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SAZEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Browser
    headed: bool = Field(False, description="Show the browser window")
    browser_overlay: bool = Field(False, description="Inject in-page pause/resume control")
    deterministic: bool = Field(True, description="Deterministic clock/RNG/animations")
    slow_mo_ms: int = Field(0, description="Delay between provider operations")
    viewport_width: int = Field(1440, description="Viewport width in pixels")
    viewport_height: int = Field(920, description="Viewport height in pixels")

    # Action pipeline
    stability_profile: StabilityProfile = Field(StabilityProfile.BALANCED)
    action_timeout_ms: int = Field(10_000, description="Timeout for browser actions")
    stable_wait_ms: int = Field(120, description="Base quiet window after actions")
    max_action_attempts: int = Field(1, description="Attempts for retryable failures")
    retry_backoff_ms: int = Field(0, description="Wait between retry attempts")

    # Artifacts
    capture_screenshots: bool = Field(True)
    annotate_screenshots: bool = Field(True)
    screenshot_mode: ScreenshotMode = Field(ScreenshotMode.VIEWPORT)
    redaction_pack: RedactionPack = Field(RedactionPack.DEFAULT)
    artifacts_dir: str = Field(".agent-browser/artifacts", description="Directory for screenshots")
    sessions_dir: str = Field(".agent-browser/sessions", description="Directory for saved sessions")

    # Replay
    preflight_timeout_ms: int = Field(4_000, description="Per-origin reachability check timeout")

    # Logging
    log_level: str = Field("INFO")
    log_json: bool = Field(False, description="Emit logs as JSON")

    def session_options(self, **overrides: Any) -> SessionOptions:
        """Build session options from settings, with explicit overrides on top."""
        base = SessionOptions(
            headed=self.headed,
            browser_overlay=self.browser_overlay,
            deterministic=self.deterministic,
            slow_mo_ms=self.slow_mo_ms,
            stability_profile=self.stability_profile,
            screenshot_mode=self.screenshot_mode,
            annotate_screenshots=self.annotate_screenshots,
            redaction_pack=self.redaction_pack,
            viewport_width=self.viewport_width,
            viewport_height=self.viewport_height,
            action_timeout_ms=self.action_timeout_ms,
            stable_wait_ms=self.stable_wait_ms,
            capture_screenshots=self.capture_screenshots,
            artifacts_dir=self.artifacts_dir,
            max_action_attempts=self.max_action_attempts,
            retry_backoff_ms=self.retry_backoff_ms,
        )
        return base.merged(**overrides) if overrides else base


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
