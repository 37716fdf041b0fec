"""Script catalog entries as published in the upstream JSON folder."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class InstallMethod(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    script: Optional[str] = None


class CatalogItem(BaseModel):
    """One script definition; unknown upstream keys are carried through."""

    model_config = ConfigDict(extra="allow")

    slug: str
    name: str = ""
    type: Optional[str] = None
    repository_url: Optional[str] = None
    install_methods: list[InstallMethod] = Field(default_factory=list)

    @property
    def label(self) -> str:
        return self.name or self.slug


class GitHubFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    path: str
    sha: str = ""
    type: str = "file"
