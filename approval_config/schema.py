"""
Approval configuration schema.

Defines the human-authored configuration artifact: engine settings and a
seedable template catalog.  YAML documents are parsed into these types by
the loader; the kernel never sees them directly.  ``EngineSettings``
converts to the kernel's ``WorkflowOptions`` and ``TemplateSeed`` exposes
kernel domain objects for ``TemplateService.bootstrap``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from approval_kernel.domain.workflow import FieldDescriptor, LevelDefinition
from approval_kernel.services.workflow_service import WorkflowOptions

# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Database and workflow tunables."""

    database_url: str = "sqlite:///approvals.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    request_number_prefix: str = "REQ"
    sequence_width: int = 5
    max_number_retries: int = 3
    default_page_size: int = 20
    max_page_size: int = 100
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.request_number_prefix:
            raise ValueError("request_number_prefix must not be empty")
        if self.sequence_width < 1:
            raise ValueError(f"sequence_width must be >= 1, got {self.sequence_width}")
        if self.max_number_retries < 1:
            raise ValueError(
                f"max_number_retries must be >= 1, got {self.max_number_retries}"
            )
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError(
                f"default_page_size must be between 1 and max_page_size "
                f"({self.max_page_size}), got {self.default_page_size}"
            )

    def workflow_options(self) -> WorkflowOptions:
        return WorkflowOptions(
            request_number_prefix=self.request_number_prefix,
            sequence_width=self.sequence_width,
            max_number_retries=self.max_number_retries,
            default_page_size=self.default_page_size,
            max_page_size=self.max_page_size,
        )


# ---------------------------------------------------------------------------
# Catalog seed
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TemplateSeed:
    """One template to bootstrap, with its fields and levels per scope."""

    name: str
    display_name: str
    description: str | None = None
    icon: str | None = None
    color: str | None = None
    default_sla_hours: int | None = None
    fields: tuple[FieldDescriptor, ...] = ()
    levels: tuple[LevelDefinition, ...] = ()


@dataclass(frozen=True)
class CatalogSeed:
    templates: tuple[TemplateSeed, ...] = ()

    def names(self) -> tuple[str, ...]:
        return tuple(t.name for t in self.templates)


# ---------------------------------------------------------------------------
# Loaded configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActiveConfig:
    """
    The loaded configuration document.

    ``checksum`` is the SHA-256 of the raw YAML text so an operator can
    tell which document governed a run.
    """

    config_id: str
    version: int
    settings: EngineSettings = field(default_factory=EngineSettings)
    catalog: CatalogSeed = field(default_factory=CatalogSeed)
    checksum: str = ""
    source_path: str | None = None
