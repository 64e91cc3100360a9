"""Tool catalogue: typed arguments, per-agent filtering and vendor wire formats."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Optional, Type

from pydantic import BaseModel, Field, ValidationError

from .errors import ToolValidationError

logger = logging.getLogger("Tool-Specs")

SPAWN_TASK = "spawn_task"
LOAD_SKILL = "load_skill"

EXPLORE_TOOLS = {"list_files", "read_file", "glob", "grep"}


class ListFilesArgs(BaseModel):
    path: str = Field(".", description = "Directory path relative to the project root.")


class ReadFileArgs(BaseModel):
    path: str = Field(description = "File path relative to the project root.")


class WriteFileArgs(BaseModel):
    path: str = Field(description = "File path relative to the project root.")
    content: str = Field(description = "Full file content to write.")


class EditFileArgs(BaseModel):
    path: str = Field(description = "File path relative to the project root.")
    old_string: str = Field(description = "Exact text to replace, including whitespace and indentation.")
    new_string: str = Field(description = "Replacement text.")
    replace_all: bool = Field(False, description = "Replace every occurrence instead of requiring a unique match.")


class GlobArgs(BaseModel):
    pattern: str = Field(description = "Glob pattern such as **/*.py or src/**/*.{ts,tsx}.")
    path: str = Field(".", description = "Directory to search from, relative to the project root.")


class GrepArgs(BaseModel):
    pattern: str = Field(description = "Regular expression searched line by line.")
    include: str = Field("", description = "Optional file glob such as *.py to restrict the search.")
    path: str = Field(".", description = "Directory to search from, relative to the project root.")


class RunCommandArgs(BaseModel):
    command: str = Field(description = "Shell command executed in the project root.")


class LoadSkillArgs(BaseModel):
    skill_id: str = Field(description = "Identifier of the skill to load.")


class SpawnTaskArgs(BaseModel):
    prompt: str = Field(description = "Full instructions for the sub-agent.")
    description: str = Field(description = "Short label shown while the task runs.")
    type: Literal["general", "explore"] = Field(
        "general",
        description = "explore is read-only search; general can edit files and run commands.",
    )


def _clean_schema(schema: Any) -> Any:
    """Drop pydantic titles so the wire schema stays compact."""
    if isinstance(schema, dict):
        return {
            key: _clean_schema(value)
            for key, value in schema.items()
            if key != "title"
        }
    if isinstance(schema, list):
        return [_clean_schema(item) for item in schema]
    return schema


@dataclass
class ToolSpec:
    """Model-facing declaration of one tool."""

    name: str
    description: str
    parameters: Dict[str, Any]
    args_model: Optional[Type[BaseModel]] = None
    server_id: Optional[str] = None

    @classmethod
    def from_model(cls, name: str, description: str, args_model: Type[BaseModel]) -> "ToolSpec":
        return cls(
            name = name,
            description = description,
            parameters = _clean_schema(args_model.model_json_schema()),
            args_model = args_model,
        )

    def to_openai(self) -> Dict[str, Any]:
        """OpenAI function-calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic(self) -> Dict[str, Any]:
        """Anthropic tool format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


BUILTIN_TOOLS: List[ToolSpec] = [
    ToolSpec.from_model(
        "list_files",
        "List files and directories at a path inside the project (non-recursive).",
        ListFilesArgs,
    ),
    ToolSpec.from_model(
        "read_file",
        "Read a text file from the project.",
        ReadFileArgs,
    ),
    ToolSpec.from_model(
        "write_file",
        "Create or overwrite a file in the project. Parent directories are created.",
        WriteFileArgs,
    ),
    ToolSpec.from_model(
        "edit_file",
        "Replace an exact substring in a file. Read the file first. "
        "Fails when old_string is missing or not unique unless replace_all is set.",
        EditFileArgs,
    ),
    ToolSpec.from_model(
        "glob",
        "Find files by glob pattern. Dependency and build directories are skipped.",
        GlobArgs,
    ),
    ToolSpec.from_model(
        "grep",
        "Search file contents with a regular expression. Binary and very large files are skipped.",
        GrepArgs,
    ),
    ToolSpec.from_model(
        "run_command",
        "Run a shell command in the project root and return stdout, stderr and exit code.",
        RunCommandArgs,
    ),
]

LOAD_SKILL_TOOL = ToolSpec.from_model(
    LOAD_SKILL,
    "Load the full instructions of an available skill by id.",
    LoadSkillArgs,
)

SPAWN_TASK_TOOL = ToolSpec.from_model(
    SPAWN_TASK,
    "Delegate a self-contained task to a sub-agent. Several spawn_task calls in one "
    "step run concurrently. Use type explore for read-only research.",
    SpawnTaskArgs,
)

ARGUMENT_MODELS: Dict[str, Type[BaseModel]] = {
    spec.name: spec.args_model
    for spec in BUILTIN_TOOLS + [LOAD_SKILL_TOOL, SPAWN_TASK_TOOL]
}


def build_catalogue(
    include_skills: bool = False,
    include_tasks: bool = True,
    extra_tools: Optional[Iterable[ToolSpec]] = None,
) -> List[ToolSpec]:
    """
    Build the full agent catalogue.

    Parameters:
        include_skills: Offer load_skill, only when skills are available.
        include_tasks: Offer spawn_task.
        extra_tools: Tools from connected tool providers. Built-in names win on clashes.
    """
    catalogue = list(BUILTIN_TOOLS)
    if include_skills:
        catalogue.append(LOAD_SKILL_TOOL)
    if include_tasks:
        catalogue.append(SPAWN_TASK_TOOL)

    taken = {spec.name for spec in catalogue}
    for spec in extra_tools or []:
        if spec.name in taken:
            logger.warning(f"Skipping provider tool '{spec.name}' from {spec.server_id}: name already in use")
            continue
        taken.add(spec.name)
        catalogue.append(spec)
    return catalogue


def tools_for_sub_agent(task_type: str, catalogue: List[ToolSpec]) -> List[ToolSpec]:
    """
    Restrict a catalogue for a delegated task.

    Parameters:
        task_type: explore (read and search only) or general (no delegation, no skills).
        catalogue: Full catalogue of the parent agent.
    """
    if task_type == "explore":
        return [spec for spec in catalogue if spec.name in EXPLORE_TOOLS and spec.server_id is None]
    if task_type == "general":
        return [spec for spec in catalogue if spec.name not in {SPAWN_TASK, LOAD_SKILL}]
    raise ValueError(f"Unknown task type: {task_type}")


def parse_tool_arguments(name: str, arguments: Any) -> BaseModel:
    """
    Validate raw model arguments against the tool's argument model.

    Parameters:
        name: Built-in tool name.
        arguments: Argument map produced by the provider adapter.
    """
    args_model = ARGUMENT_MODELS.get(name)
    if args_model is None:
        raise ToolValidationError(f"No argument model for tool: {name}", tool_name = name)
    if not isinstance(arguments, dict):
        raise ToolValidationError(f"Arguments for {name} must be an object", tool_name = name)
    try:
        return args_model.model_validate(arguments)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'arguments'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ToolValidationError(f"Invalid arguments for {name}: {problems}", tool_name = name) from exc
