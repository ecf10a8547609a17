"""Application configuration using pydantic-settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via environment variables or a .env file.
    See .env.example for a template.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # Application Settings
    # ========================================================================
    app_name: str = Field(default="AI Video Orchestrator", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_file: Optional[str] = Field(default=None, description="Optional log file path (rotated at 10 MB)")
    log_json: bool = Field(default=False, description="Write the log file as JSON lines")

    # ========================================================================
    # Generation API Settings
    # ========================================================================
    gemini_api_key: Optional[str] = Field(
        default=None,
        description="Default Gemini API key, used when the request context carries none",
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Base URL of the Gemini REST API",
    )
    http_timeout_seconds: float = Field(
        default=120.0, description="Timeout for a single outbound HTTP request (default: 120s)"
    )

    # ========================================================================
    # Model Selection (primary / fallback per kind)
    # ========================================================================
    image_model: str = Field(default="gemini-2.5-flash-image", description="Primary image model")
    image_fallback_model: Optional[str] = Field(
        default="imagen-4.0-generate-001", description="Fallback image model"
    )
    video_model: str = Field(default="veo-3.0-generate-001", description="Primary opening-clip model")
    video_fallback_model: Optional[str] = Field(
        default="veo-3.0-fast-generate-001", description="Fallback opening-clip model"
    )
    tts_model: str = Field(default="gemini-2.5-flash-preview-tts", description="Primary TTS model")
    tts_fallback_model: Optional[str] = Field(
        default="gemini-2.5-pro-preview-tts", description="Fallback TTS model"
    )
    default_voice: str = Field(default="Kore", description="Default prebuilt TTS voice (see aivideo.models.voices)")
    scenario_model: str = Field(default="gemini-2.5-flash", description="Primary script (scenario) model")
    scenario_fallback_model: Optional[str] = Field(
        default="gemini-2.5-pro", description="Fallback script (scenario) model"
    )
    scenario_slide_count: int = Field(default=6, description="Slides requested from the script model (default: 6)")
    scenario_temperature: float = Field(default=0.8, description="Sampling temperature for script generation")
    scenario_max_output_tokens: int = Field(default=8192, description="Output token cap for script generation")

    # ========================================================================
    # Rate Limiting Settings
    # ========================================================================
    rate_limit_requests_per_minute: int = Field(
        default=10, description="Nominal requests per minute per model (default: 10)"
    )
    rate_limit_max_retries: int = Field(
        default=5, description="Maximum attempts per model for transient failures (default: 5)"
    )
    rate_limit_initial_backoff_ms: int = Field(
        default=5000, description="First retry backoff in milliseconds (default: 5000)"
    )
    rate_limit_max_backoff_ms: int = Field(
        default=60000, description="Upper bound for retry backoff and adaptive delay (default: 60000)"
    )
    rate_limit_min_delay_ms: int = Field(
        default=6000, description="Starting adaptive delay between calls in milliseconds (default: 6000)"
    )
    rate_limit_max_delay_ms: int = Field(
        default=30000, description="Soft ceiling for the adaptive delay used by profiles (default: 30000)"
    )
    rate_limit_success_decrease_ratio: float = Field(
        default=0.9, description="Delay multiplier after a streak of successes (default: 0.9)"
    )
    rate_limit_error_increase_ratio: float = Field(
        default=1.5, description="Delay multiplier after an error (default: 1.5)"
    )
    rate_limit_success_streak_for_decrease: int = Field(
        default=3, description="Consecutive successes required before the delay shrinks (default: 3)"
    )

    # ========================================================================
    # Opening Clip Polling
    # ========================================================================
    video_poll_interval_seconds: float = Field(
        default=10.0, description="Seconds between long-running operation polls (default: 10)"
    )
    video_max_poll_attempts: int = Field(
        default=30, description="Maximum polls before giving up (default: 30, i.e. 5 minutes)"
    )

    # ========================================================================
    # Media Tools
    # ========================================================================
    ffmpeg_binary: str = Field(default="ffmpeg", description="ffmpeg executable")
    ffprobe_binary: str = Field(default="ffprobe", description="ffprobe executable")
    work_dir: str = Field(default="/tmp/aivideo", description="Root for composition working directories")
    allowed_base_dirs: list[str] = Field(
        default_factory=list,
        description="Extra directories external tools may touch (work_dir and storage_path are always allowed)",
    )
    video_width: int = Field(default=1920, description="Output width in pixels (default: 1920)")
    video_height: int = Field(default=1080, description="Output height in pixels (default: 1080)")
    video_fps: int = Field(default=30, description="Output frame rate (default: 30)")
    audio_sample_rate: int = Field(
        default=48000, description="Sample rate of every scene video's audio track (default: 48 kHz)"
    )
    audio_channels: int = Field(default=2, description="Channel count of every scene video's audio track")
    default_slide_duration_seconds: float = Field(
        default=10.0, description="Slide duration when no narration length is known (default: 10s)"
    )
    probe_timeout_seconds: int = Field(default=30, description="ffprobe timeout (default: 30s)")
    silence_timeout_seconds: int = Field(default=120, description="Silence detection timeout (default: 2 min)")
    encode_timeout_seconds: int = Field(default=180, description="Encode/mux/concat timeout (default: 3 min)")
    max_output_lines: int = Field(default=1000, description="Lines of tool output kept for diagnostics")
    cleanup_delay_seconds: float = Field(
        default=60.0, description="Grace period before a successful work dir is deleted (default: 60s)"
    )
    cleanup_workers: int = Field(default=2, description="Concurrent work dir deletions (default: 2)")

    # ========================================================================
    # Audio Segmentation
    # ========================================================================
    silence_noise_db: int = Field(default=-30, description="Noise floor for silence detection in dB")
    silence_min_duration: float = Field(default=0.1, description="Minimum silence length in seconds")
    leading_silence_window: float = Field(
        default=0.05, description="A silence starting before this offset is treated as head-room"
    )
    tempo_tolerance_seconds: float = Field(
        default=0.3, description="Skip tempo adjustment when within this many seconds of the target"
    )
    min_tempo: float = Field(default=0.5, description="Lowest atempo ratio")
    max_tempo: float = Field(default=2.0, description="Highest atempo ratio")

    # ========================================================================
    # Subtitle Settings
    # ========================================================================
    subtitle_font: str = Field(default="Noto Sans CJK KR", description="ASS subtitle font")
    subtitle_font_size: int = Field(default=64, description="ASS subtitle font size")
    subtitle_margin_v: int = Field(default=60, description="Bottom margin for subtitles")
    subtitle_chars_per_second: float = Field(
        default=4.5, description="Speech rate used when no audio timing is available"
    )
    subtitle_max_chars_per_line: int = Field(
        default=35, description="Lines longer than this get a soft break"
    )

    # ========================================================================
    # Storage & Parallelism Settings
    # ========================================================================
    storage_path: str = Field(default="storage", description="Root for scenes, checkpoints and stored objects")
    max_parallel_scenes: int = Field(
        default=3,
        description="Maximum number of scenes generated concurrently (default: 3, set to 1 for sequential)",
    )

    def tool_base_dirs(self) -> list[str]:
        """Directories external media tools are allowed to read and write."""
        return [self.work_dir, self.storage_path, *self.allowed_base_dirs]


# Global settings instance
settings = Settings()
