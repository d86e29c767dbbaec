from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat


class InstrumentationConfig(BaseModel):
    """How a program is instrumented before it is compiled."""

    model_config = ConfigDict(frozen=True)

    insert_entry_call: bool = True
    insert_exit_call: bool = True
    # Import statements (or dotted names) the instrumented program needs.
    imports: Tuple[str, ...] = ()
    # Ordered: regular expression -> replacement.
    replacements: Dict[str, str] = Field(default_factory=dict)
    # Files providing the trace runtime, compiled along with the program.
    instrumentation_files: Tuple[str, ...] = ()
    required_source_files: Tuple[str, ...] = ()
    classpath: Optional[str] = None

    @property
    def source_files(self) -> List[str]:
        return [*self.instrumentation_files, *self.required_source_files]


class RunDescriptor(BaseModel):
    """One supervised run of an external command."""

    model_config = ConfigDict(frozen=True)

    process_id: Optional[str] = None
    command: Tuple[str, ...]
    working_dir: Optional[str] = None
    input_lines: Tuple[str, ...] = ()
    env: Optional[Dict[str, str]] = None
    timeout_seconds: Optional[PositiveFloat] = None
    show_output: bool = False
    show_error: bool = True
    label_streams: bool = False
