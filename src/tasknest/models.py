from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from uuid import uuid4
import yaml

from .recovery import FieldValidationError

class TaskStatus(Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

def new_node_id() -> str:
    return uuid4().hex

def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc']) or 'value'}: {e['msg']}" for e in error.errors()
    )

class BaseYAMLModel(BaseModel):
    """Pydantic model that can round trip through YAML documents."""

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.model_dump(mode="json"), default_flow_style=False, sort_keys=False, allow_unicode=True)

    @classmethod
    def from_yaml(cls, text: str):
        return cls.model_validate(yaml.safe_load(text) or {})

class TaskNode(BaseYAMLModel):
    """One entry in an owner's task tree."""

    id: str = Field(default_factory=new_node_id, description="Opaque unique identifier, immutable")
    owner_id: str = Field(description="The owning user, immutable")
    parent_id: Optional[str] = Field(default=None, description="Parent node id, None for a root")
    title: str = Field(description="Display title, never empty")
    description: Optional[str] = Field(default=None, description="Optional free text")
    status: TaskStatus = Field(default=TaskStatus.NOT_STARTED, description="Current status of the node")
    order: int = Field(default=0, ge=0, description="Position among siblings, ascending")
    time_spent: int = Field(default=0, ge=0, description="Accumulated time in milliseconds")
    completion_percentage: float = Field(default=0.0, ge=0, le=100, description="Completion in [0, 100]")
    created_at: datetime = Field(default_factory=datetime.now, description="When the node was created")
    updated_at: datetime = Field(default_factory=datetime.now, description="When the node was last written")

    @field_validator('owner_id')
    @classmethod
    def validate_owner(cls, v):
        if not v or not v.strip():
            raise ValueError("owner_id must not be empty")
        return v

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator('description')
    @classmethod
    def strip_description(cls, v):
        return v.strip() if v is not None else v

    @model_validator(mode='after')
    def validate_parent(self):
        if self.parent_id is not None and self.parent_id == self.id:
            raise ValueError("a task node cannot be its own parent")
        return self

    @classmethod
    def build(cls, **data) -> 'TaskNode':
        """Construct a node, reporting bad input as FieldValidationError."""
        try:
            return cls(**data)
        except ValidationError as e:
            raise FieldValidationError(_describe(e)) from e

    def with_changes(self, **changes) -> 'TaskNode':
        """Return a re-validated copy with the given fields replaced and updated_at bumped."""
        data = self.model_dump()
        data.update(changes)
        data['updated_at'] = datetime.now()
        return type(self).build(**data)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

class NodeChanges(BaseModel):
    """Partial update for edit_node; only the fields actually set are applied."""

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    completion_percentage: Optional[float] = Field(default=None, ge=0, le=100)

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        # runs only when a title is passed, so None here is an explicit None
        if v is None or not v.strip():
            raise ValueError("title must not be empty")
        return v

    @field_validator('status', 'completion_percentage')
    @classmethod
    def validate_not_cleared(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be cleared")
        return v

    @classmethod
    def of(cls, **fields) -> 'NodeChanges':
        try:
            return cls(**fields)
        except ValidationError as e:
            raise FieldValidationError(_describe(e)) from e

    def supplied(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}

class TaskTable(BaseYAMLModel):
    """The persisted table of every owner's task nodes."""

    schema_version: str = Field(description="Layout version of this document")
    nodes: List[TaskNode] = Field(
        default_factory=list,
        description="Every stored task node"
    )

    @model_validator(mode='after')
    def validate_unique_ids(self):
        seen = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"duplicate task node id: {node.id}")
            seen.add(node.id)
        return self

class ProjectTemplate(BaseYAMLModel):
    """A predefined task tree that can be instantiated for an owner."""

    title: str = Field(description="Title of the template, also the default root title")
    description: Optional[str] = Field(default=None, description="What the template is for")
    tasks: List['ProjectTemplate.TemplateTask'] = Field(
        default_factory=list,
        description="Template tasks, linked through parent_template_task_id"
    )

    class TemplateTask(BaseModel):
        template_task_id: str = Field(description="Identifier unique within the template")
        parent_template_task_id: Optional[str] = Field(default=None, description="Parent template task, None for top level")
        title: str = Field(description="Title of the created task")
        description: Optional[str] = Field(default=None, description="Description of the created task")
        order: int = Field(default=0, description="Relative position among template siblings")
        status: Optional[TaskStatus] = Field(default=None, description="Initial status, not_started when omitted")

        @field_validator('title')
        @classmethod
        def validate_title(cls, v):
            if not v.strip():
                raise ValueError("title must not be empty")
            return v

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if not v.strip():
            raise ValueError("title must not be empty")
        return v

    @model_validator(mode='after')
    def validate_links(self):
        ids = [t.template_task_id for t in self.tasks]
        if len(ids) != len(set(ids)):
            raise ValueError("template task ids must be unique")
        known = set(ids)
        for t in self.tasks:
            if t.parent_template_task_id is not None and t.parent_template_task_id not in known:
                raise ValueError(f"unknown parent template task: {t.parent_template_task_id}")
        # every task must reach the top level without revisiting a task
        parents = {t.template_task_id: t.parent_template_task_id for t in self.tasks}
        for start in ids:
            seen = set()
            current = start
            while current is not None:
                if current in seen:
                    raise ValueError(f"template task cycle through: {start}")
                seen.add(current)
                current = parents[current]
        return self

    def children_of(self, template_task_id: Optional[str]) -> List['ProjectTemplate.TemplateTask']:
        """Template tasks directly under the given parent, in template order."""
        return sorted(
            (t for t in self.tasks if t.parent_template_task_id == template_task_id),
            key=lambda t: t.order
        )

    def height(self) -> int:
        """Levels of template tasks below the template root (0 for an empty template)."""
        height = 0
        stack = [(t, 1) for t in self.children_of(None)]
        while stack:
            task, level = stack.pop()
            height = max(height, level)
            stack.extend((c, level + 1) for c in self.children_of(task.template_task_id))
        return height

ProjectTemplate.model_rebuild()
