"""
Configuration and settings for the blog content API.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_PROTECTED_IMAGES = [
    "ben-smiling-pic.png",
    "benstanfieldio-opengraph.png",
    "left-chevron.svg",
]


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Repository hosting (GitHub content API)
    github_token: Optional[str] = Field(default=None)
    github_owner: Optional[str] = Field(default=None)
    github_repo: Optional[str] = Field(default=None)
    github_branch: Optional[str] = Field(default=None)
    github_api_url: str = Field(default="https://api.github.com")
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Shared secret for every mutating route
    editor_password: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)
    local_repo_path: Optional[str] = Field(default=None)

    # Repository layout
    posts_dir: str = Field(default="posts")
    books_path: str = Field(default="books/books.json")
    images_dir: str = Field(default="images")

    # Orphaned image sweep
    image_grace_period_days: float = Field(default=7, ge=0)
    protected_images: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROTECTED_IMAGES)
    )

    # Rendered post pages
    site_url: str = Field(default="https://benstanfield.io")
    default_og_image: str = Field(default="/images/benstanfieldio-opengraph.png")

    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    @property
    def github_configured(self) -> bool:
        return bool(self.github_token and self.github_owner and self.github_repo)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
