import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from .data.store import YamlNodeStore
from .hierarchy import MAX_DEPTH
from .lifecycle import TaskTreeService
from .recovery import FieldValidationError

DEFAULT_DATA_FILE = Path.home() / ".local" / "share" / "tasknest" / "data" / "tasks.yml"
DEFAULT_OWNER = "local"

_TRUE = ('1', 'true', 'yes', 'on')

class Settings(BaseModel):
    """Runtime configuration, normally read from TASKNEST_* environment variables."""

    data_file: Path = Field(default=DEFAULT_DATA_FILE, description="Where the task table is stored")
    max_depth: int = Field(default=MAX_DEPTH, ge=0, description="Deepest allowed node depth")
    read_only: bool = Field(default=False, description="Reject every mutation when set")
    owner: str = Field(default=DEFAULT_OWNER, min_length=1, description="Owner id used by the command line")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> 'Settings':
        """
        Build settings from the environment; keyword overrides that are not None win.

        Recognised variables: TASKNEST_DATA_FILE, TASKNEST_MAX_DEPTH,
        TASKNEST_READ_ONLY, TASKNEST_OWNER.
        """
        environ = os.environ if environ is None else environ
        values = {}
        if environ.get('TASKNEST_DATA_FILE'):
            values['data_file'] = Path(environ['TASKNEST_DATA_FILE']).expanduser()
        if environ.get('TASKNEST_MAX_DEPTH'):
            values['max_depth'] = environ['TASKNEST_MAX_DEPTH']
        if environ.get('TASKNEST_READ_ONLY'):
            values['read_only'] = environ['TASKNEST_READ_ONLY'].lower() in _TRUE
        if environ.get('TASKNEST_OWNER'):
            values['owner'] = environ['TASKNEST_OWNER']
        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**values)
        except ValidationError as e:
            raise FieldValidationError(f"Invalid configuration: {e}") from e

    def build_service(self) -> TaskTreeService:
        """Wire a YAML backed store into a TaskTreeService."""
        return TaskTreeService(
            YamlNodeStore(self.data_file),
            max_depth=self.max_depth,
            mutations_enabled=not self.read_only,
        )
