"""System prompts for the main agent and delegated sub-agents."""

from datetime import date
from pathlib import Path
from typing import List, Optional

from .environment import EnvironmentInfo
from .skills import LoadedSkill

PLATFORM_LABELS = {
    "win32": "Windows",
    "darwin": "macOS",
}


def platform_label(platform_name: str) -> str:
    return PLATFORM_LABELS.get(platform_name, "Linux")


def _today() -> str:
    return date.today().strftime("%a, %b %d, %Y")


def build_system_prompt(
    environment: EnvironmentInfo,
    project_root: Path,
    available_skills: Optional[List[LoadedSkill]] = None,
    enabled_skills: Optional[List[LoadedSkill]] = None,
) -> str:
    """
    Main agent prompt.

    Parameters:
        environment: Host facts.
        project_root: Working directory of every tool.
        available_skills: Skills the model may load with load_skill.
        enabled_skills: Skills whose text is inlined up front.
    """
    platform_name = platform_label(environment.platform)
    if environment.is_windows:
        shell_rules = (
            "- Use PowerShell syntax, e.g. Get-ChildItem instead of ls and Select-String instead of grep."
        )
    else:
        shell_rules = (
            "- For grep, add --exclude-dir=node_modules --exclude-dir=.git. Prefer rg, which respects .gitignore."
        )

    prompt = f"""You are a coding agent working inside the user's project.
You help with software engineering tasks: fixing bugs, adding features, refactoring, writing tests, explaining code and running builds.

Use tools to inspect and change the project. Read files before you reason about them; never guess file contents.

# Environment
<env>
  Platform: {platform_name} ({environment.arch})
  Shell: {environment.shell}
  Working directory: {project_root}
  Today's date: {_today()}
</env>

# File editing
- Prefer edit_file over write_file for existing files, and read_file first so old_string matches exactly.
- Give old_string enough surrounding context to be unique.
- Use write_file for new files or full rewrites, always with the complete content.

# Searching
- Use glob to find files by pattern and grep to search contents. Both skip dependency and build directories.
- Use run_command for search only when glob and grep are not enough.

# Rules for run_command
- Your shell is {environment.shell}. Write commands for {platform_name}.
{shell_rules}
- Keep commands short-lived. Avoid dev servers, watchers and interactive programs unless asked.
- Never run destructive commands unless the user explicitly asks.

# Delegation
- spawn_task hands a self-contained task to a sub-agent. Several spawn_task calls in one step run concurrently.
- Use type "explore" for read-only research and "general" when the task needs edits or commands."""

    if available_skills:
        entries = "\n".join(
            f"  <skill>\n    <name>{skill.name}</name>\n    <id>{skill.id}</id>\n"
            f"    <description>{skill.description}</description>\n  </skill>"
            for skill in available_skills
        )
        prompt += (
            "\n\n# Available Skills\nLoad a skill with the load_skill tool when a task matches its description."
            f"\n\n<available_skills>\n{entries}\n</available_skills>"
        )

    for skill in enabled_skills or []:
        prompt += f'\n\n<skill_content name="{skill.name}">\n{skill.text}\n</skill_content>'
    return prompt


def build_sub_agent_prompt(environment: EnvironmentInfo, project_root: Path, task_type: str) -> str:
    """Prompt for a delegated task; explore tasks are told they are read-only."""
    rules = [
        "- Focus only on the task given.",
        "- Be thorough but concise.",
        "- Read files before editing. Use glob and grep to find files.",
    ]
    if task_type == "explore":
        rules.append("- You have READ-ONLY access. You cannot write, edit, or run commands.")
    rules.append("- Finish with a summary that directly answers the task.")

    return (
        "You are a sub-agent working on one delegated task. Complete it and return a clear, "
        "concise summary of your findings or actions.\n\n"
        "# Environment\n"
        f"Platform: {platform_label(environment.platform)} | Shell: {environment.shell} | "
        f"CWD: {project_root} | Date: {_today()}\n\n"
        "# Rules\n" + "\n".join(rules)
    )
