"""Configuration schema for the session client."""

import os

from pydantic import BaseModel, Field, field_validator


class ClientConfig(BaseModel):
    """Per-device session client configuration."""

    signaling_url: str = Field(
        default="ws://localhost:8080",
        description="Signaling coordinator WebSocket URL",
    )
    negotiation_timeout_s: float | None = Field(
        default=30.0,
        gt=0,
        description="Bound on negotiating → connected; None waits indefinitely",
    )
    connect_timeout_s: float = Field(
        default=10.0,
        gt=0,
        description="Signaling connection open timeout",
    )
    video_width: int = Field(default=1280, ge=160, le=3840, description="Capture width")
    video_height: int = Field(default=720, ge=120, le=2160, description="Capture height")
    ice_servers: list[str] = Field(
        default_factory=lambda: ["stun:stun.l.google.com:19302"],
        description="STUN/TURN server URLs",
    )
    api_base_url: str = Field(
        default="http://localhost:5000/api/video-consultancy",
        description="Consultation API base URL (recording hand-off, end-of-call)",
    )
    request_timeout_s: float = Field(default=10.0, gt=0, description="HTTP request timeout")
    max_chat_chars: int = Field(
        default=500,
        ge=1,
        le=10000,
        description="Longest chat message the coordinator relays",
    )

    @field_validator("signaling_url")
    @classmethod
    def validate_signaling_url(cls, v: str) -> str:
        """Validate that the signaling URL uses a WebSocket scheme."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(f"signaling_url must start with ws:// or wss://, got '{v}'")
        return v

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Build configuration from defaults plus environment overrides.

        Reads SIGNALING_URL, NEGOTIATION_TIMEOUT_S (``0`` or ``none`` disables
        the bound) and CONSULTATION_API_URL.
        """
        data: dict[str, object] = {}

        if signaling_url := os.getenv("SIGNALING_URL"):
            data["signaling_url"] = signaling_url

        if timeout := os.getenv("NEGOTIATION_TIMEOUT_S"):
            data["negotiation_timeout_s"] = (
                None if timeout.lower() in ("0", "none", "") else float(timeout)
            )

        if api_url := os.getenv("CONSULTATION_API_URL"):
            data["api_base_url"] = api_url

        return cls.model_validate(data)
