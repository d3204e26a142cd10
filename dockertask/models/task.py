"""Task input models.

A TaskSpec is built once from caller input and never mutated afterwards.
"""

from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import IllegalArgumentError


class VolumeBinding(BaseModel):
    """Host path bound into the container."""

    model_config = ConfigDict(frozen=True)

    host_path: str = Field(..., min_length=1)
    container_path: str = Field(..., min_length=1)
    mode: Literal["ro", "rw"] = "rw"

    @field_validator("container_path")
    @classmethod
    def validate_container_path(cls, v):
        if not v.startswith("/"):
            raise ValueError("container path must be absolute")
        return v

    @classmethod
    def parse(cls, value: str) -> "VolumeBinding":
        """Parse a ``HOST:CONTAINER[:ro|rw]`` binding string."""
        parts = value.split(":")
        if len(parts) not in (2, 3):
            raise IllegalArgumentError(
                f"Invalid volume binding '{value}', expected HOST:CONTAINER[:ro|rw]"
            )
        mode = parts[2] if len(parts) == 3 else "rw"
        try:
            return cls(host_path=parts[0], container_path=parts[1], mode=mode)
        except ValidationError as e:
            raise IllegalArgumentError(f"Invalid volume binding '{value}': {e}") from e

    def to_bind(self) -> str:
        """Render as a Docker ``binds`` entry."""
        return f"{self.host_path}:{self.container_path}:{self.mode}"


class TaskSpec(BaseModel):
    """Everything needed to run one container task."""

    model_config = ConfigDict(frozen=True)

    image: str = Field(..., min_length=1, description="Image reference")
    command: Tuple[str, ...] = Field(default=(), description="Command and arguments")
    cpu_shares: int = Field(default=1024, ge=2, le=262144)
    memory_mb: int = Field(default=512, ge=6, description="Memory limit in MiB")
    volumes: Tuple[VolumeBinding, ...] = Field(default=())
    docker_host: Optional[str] = None
    docker_cert_path: Optional[str] = None
    runner_script_path: Optional[str] = Field(
        default=None, description="Host path of the runner script to inject"
    )
    timeout: float = Field(default=3600.0, gt=0, description="Overall wait timeout in seconds")
    stop_timeout: int = Field(default=60, ge=0, description="Graceful stop period in seconds")
    debug: bool = False

    @field_validator("image")
    @classmethod
    def validate_image(cls, v):
        v = v.strip()
        if not v or any(c.isspace() for c in v):
            raise ValueError("image reference must be non-empty and contain no whitespace")
        return v

    @property
    def memory_bytes(self) -> int:
        return self.memory_mb * 1024 * 1024

    @classmethod
    def build(cls, **kwargs) -> "TaskSpec":
        """Validate caller input, raising IllegalArgumentError when malformed."""
        try:
            return cls(**kwargs)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise IllegalArgumentError(f"Invalid task specification: {details}") from e


def parse_volume_bindings(values: Optional[List[str]]) -> Tuple[VolumeBinding, ...]:
    """Parse repeated ``--volume`` arguments."""
    return tuple(VolumeBinding.parse(v) for v in values or [])
