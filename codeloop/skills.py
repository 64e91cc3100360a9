"""Pre-loaded skill texts served to the load_skill tool."""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol


@dataclass
class LoadedSkill:
    name: str
    text: str
    id: str = ""
    description: str = ""


class SkillLoader(Protocol):
    def load_by_name(self, skill_id: str) -> Optional[LoadedSkill]:
        ...

    def available(self) -> List[LoadedSkill]:
        ...


class StaticSkillLoader:
    """Skills held in memory, keyed by id."""

    def __init__(self, skills: Optional[List[LoadedSkill]] = None):
        self._skills: Dict[str, LoadedSkill] = {}
        for skill in skills or []:
            self.add(skill)

    def add(self, skill: LoadedSkill) -> None:
        if not skill.id:
            skill.id = skill.name
        self._skills[skill.id] = skill

    def load_by_name(self, skill_id: str) -> Optional[LoadedSkill]:
        skill = self._skills.get(skill_id)
        if skill is not None:
            return skill
        for candidate in self._skills.values():
            if candidate.name == skill_id:
                return candidate
        return None

    def available(self) -> List[LoadedSkill]:
        return list(self._skills.values())


def skill_from_file(skill_id: str, path: Path) -> LoadedSkill:
    """
    Wrap a markdown file as a skill.

    Parameters:
        skill_id: Identifier offered to the model.
        path: Markdown file; its first `# ` heading is the name and the first paragraph line the description.
    """
    text = Path(path).read_text(encoding = "utf-8")
    name = skill_id
    description = ""
    for line in text.splitlines():
        stripped = line.strip()
        if name == skill_id and stripped.startswith("# "):
            name = stripped[2:].strip()
            continue
        if stripped and not stripped.startswith("#") and not stripped.startswith("---"):
            description = stripped[:200]
            break
    return LoadedSkill(name = name, text = text, id = skill_id, description = description)


def format_skill_content(skill: LoadedSkill) -> str:
    return f'<skill_content name="{skill.name}">\n{skill.text}\n</skill_content>'
