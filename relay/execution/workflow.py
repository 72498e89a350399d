#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Agent definitions and the router prompt that drive a relay workflow.

The default workflow is a small team (Analyser, Planner, Coder, Researcher,
AssetDesigner, QA, Reviewer) coordinated by the Router, plus the Solo agent
used in solo and analysis modes. A YAML file can override prompts or add
agents.
"""

import copy
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from relay.debug_logger import get_logger


ROUTER_AGENT = "Router"
SOLO_AGENT = "Solo"
FINISH = "FINISH"
REVIEWER_AGENT = "Reviewer"
QA_AGENT = "QA"


TOOLS_REFERENCE = """### TOOLS
- Read a file: <read_file>path/to/file</read_file>
- Create or overwrite a file: <write_file path="path/to/file">...full content...</write_file>
- Edit a file:
<replace path="path/to/file">
<old>
exact lines to find
</old>
<new>
replacement lines
</new>
</replace>
- Several edits at once: <patch path="path/to/file"><old>...</old><new>...</new> ...</patch>
- Run a command: <execute_command>npm test</execute_command>
- Long-running command: <execute_command background="true">npm run dev</execute_command>
- Search the code: <search query="regex" type="code" />"""


ROUTER_PROMPT = """You are the Workflow Orchestrator. You decide which agent acts next based on the conversation and the CURRENT PLAN STATUS.

RULES:
1. Read the "### CURRENT PLAN STATUS" section of the context.
2. If every task is [x]: select 'Planner' when the latest user input asks for new work, otherwise 'FINISH'.
3. If tasks remain [ ]: select the agent best suited for the next pending task.
4. 'Analyser' for unclear or complex requirements, 'Planner' to create or update the task list,
   'Researcher' for documentation or web lookups, 'AssetDesigner' for images,
   'Coder' for file changes and commands, 'QA' or 'Reviewer' to verify changes.
5. Agents mark progress with "[COMPLETED: Task N]". Count those even if the plan status lags behind.
6. Do not loop. After three failed attempts at the same fix, select 'FINISH'.

OUTPUT FORMAT (JSON ONLY):
{
  "next_agent": "Analyser" | "Planner" | "Coder" | "Researcher" | "AssetDesigner" | "QA" | "Reviewer" | "FINISH",
  "reasoning": "Brief explanation of the choice"
}"""


ANALYSER_PROMPT = """You are a Systems Analyst. Break the user's request into requirements, affected areas and risks.
If you need to see files, read them with <read_file>path</read_file>.

OUTPUT FORMAT (JSON):
{
  "summary": "One sentence summary",
  "requirements": ["..."],
  "risks": ["..."],
  "verification_needed": ["files or facts to check"]
}"""


PLANNER_PROMPT = """You are a Technical Lead. Turn the analysis into an ordered checklist of small, verifiable tasks.

OUTPUT FORMAT (Markdown list, one task per line):
- [ ] **Task 1:** [Action] in [File]. *Verify by:* [Criteria]
- [ ] **Task 2:** ..."""


CODER_PROMPT = f"""You are a Software Engineer. Implement the pending tasks of the plan.

{TOOLS_REFERENCE}

RULES:
1. Prefer small <replace> edits over rewriting whole files.
2. The <old> block must match the file exactly; use a short unique snippet (3-5 lines).
3. Read a file before editing it if you have not seen its current content.
4. When you finish a task, write [COMPLETED: Task N].
5. Keep each response focused on one or two files."""


RESEARCHER_PROMPT = """You are a Research Specialist. Find the documentation, APIs or facts the team needs.
- Search documentation: <search query="..." type="web" />
- Search this codebase: <search query="regex" type="code" />
Summarize findings with sources and concrete recommendations."""


ASSET_DESIGNER_PROMPT = """You are an Asset Designer. Produce images the project needs.
- <generate_image prompt="Detailed description" aspect_ratio="1:1" />
- <resize_image path="path" width=64 height=64 format="png" />
- <save_asset src="generated_path" dest="project/path.png" />
Generate, check the result, resize if needed, then save it into the project."""


QA_PROMPT = f"""You are a QA Engineer. Verify what the Coder built against the plan.

{TOOLS_REFERENCE}

Run the tests or other checks with <execute_command>.
When the system asks you to verify pending tasks, output [COMPLETED: Task N] for each task that is truly done
and explain what is missing for the rest.

OUTPUT FORMAT (JSON):
{{
  "status": "PASS" | "FAIL",
  "defects": [{{"severity": "High", "description": "...", "location": "file:line"}}]
}}"""


REVIEWER_PROMPT = """You are a Principal Architect performing code review of the tasks marked for review.
Check style, security and correctness against the user's request and the plan.
Use [VERIFIED: Task N] or [REJECTED: Task N] for individual tasks.

OUTPUT FORMAT (JSON):
{
  "status": "APPROVED" | "REJECTED",
  "comments": ["..."],
  "suggestions": "What the Coder should change if rejected"
}"""


SOLO_PROMPT = f"""You are an autonomous Senior Developer responsible for analysis, planning, implementation and verification.

PROCESS:
1. If no plan exists yet, analyze the request and present a checklist:
   - [ ] **Task 1:** [Action]. *Verify by:* [Criteria]
   then stop and wait for the user to confirm.
2. Once the user confirms, implement the plan step by step with tools, one or two files per turn.
   Mark finished tasks with [COMPLETED: Task N].
3. When everything works, output [FINISH].

{TOOLS_REFERENCE}"""


@dataclass
class AgentDefinition:
    id: str
    name: str
    role: str
    system_prompt: str
    description: str = ""
    capabilities: List[str] = field(default_factory=list)
    creates_plan: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentDefinition":
        agent_id = str(data["id"])
        return cls(
            id=agent_id,
            name=data.get("name", agent_id),
            role=data.get("role", ""),
            system_prompt=data.get("system_prompt") or data.get("systemPrompt") or "",
            description=data.get("description", ""),
            capabilities=list(data.get("capabilities") or []),
            creates_plan=bool(data.get("creates_plan", False)),
        )


DEFAULT_AGENTS = [
    AgentDefinition("Analyser", "Analyser", "Systems Analyst", ANALYSER_PROMPT,
                    "Dissects problems into requirements and risks.", ["read_file"]),
    AgentDefinition("Planner", "Planner", "Technical Lead", PLANNER_PROMPT,
                    "Creates executable checklists.", [], creates_plan=True),
    AgentDefinition("Coder", "Coder", "Software Engineer", CODER_PROMPT,
                    "Writes and modifies code.", ["write_file", "replace", "patch", "read_file", "execute_command", "search"]),
    AgentDefinition("Researcher", "Researcher", "Research Specialist", RESEARCHER_PROMPT,
                    "Looks up documentation and external information.", ["search"]),
    AgentDefinition("AssetDesigner", "AssetDesigner", "Asset Designer", ASSET_DESIGNER_PROMPT,
                    "Generates and processes images.", ["generate_image", "resize_image", "save_asset"]),
    AgentDefinition(QA_AGENT, "QA", "QA Engineer", QA_PROMPT,
                    "Validates code and finds defects.", ["read_file", "execute_command"]),
    AgentDefinition(REVIEWER_AGENT, "Reviewer", "Principal Architect", REVIEWER_PROMPT,
                    "Performs code review.", ["read_file"]),
    AgentDefinition(SOLO_AGENT, "Solo Dev", "Full Stack Developer", SOLO_PROMPT,
                    "Autonomous agent that handles all tasks.",
                    ["write_file", "replace", "patch", "read_file", "execute_command", "search",
                     "generate_image", "resize_image", "save_asset"],
                    creates_plan=True),
]


class WorkflowRegistry:
    """Lookup of agent definitions by id plus the router prompt."""

    def __init__(self, agents: Optional[List[AgentDefinition]] = None,
                 router_prompt: str = ROUTER_PROMPT, name: str = "Default Agent Team"):
        self.name = name
        self.router_prompt = router_prompt
        self._agents: Dict[str, AgentDefinition] = {}
        for agent in agents if agents is not None else copy.deepcopy(DEFAULT_AGENTS):
            self._agents[agent.id] = agent

    def get_agent(self, agent_id: str) -> Optional[AgentDefinition]:
        agent = self._agents.get(agent_id)
        if agent is not None:
            return agent
        # Models sometimes vary the case of agent names
        lowered = agent_id.strip().lower()
        for candidate in self._agents.values():
            if candidate.id.lower() == lowered or candidate.name.lower() == lowered:
                return candidate
        return None

    def agent_ids(self) -> List[str]:
        return list(self._agents.keys())

    def system_prompt_for(self, agent_id: str) -> str:
        if agent_id == ROUTER_AGENT:
            return self.router_prompt
        agent = self.get_agent(agent_id)
        return agent.system_prompt if agent else ""

    def update_agent(self, agent_id: str, **updates: Any) -> AgentDefinition:
        agent = self.get_agent(agent_id)
        if agent is None:
            agent = AgentDefinition.from_dict({"id": agent_id, **updates})
        else:
            for key, value in updates.items():
                if not hasattr(agent, key):
                    raise ValueError(f"Unknown agent field: {key}")
                setattr(agent, key, value)
        self._agents[agent.id] = agent
        return agent

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "router_prompt": self.router_prompt,
            "agents": [a.to_dict() for a in self._agents.values()],
        }

    def save_yaml(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True), encoding="utf-8")

    @classmethod
    def from_yaml(cls, path: Path) -> "WorkflowRegistry":
        """Load a workflow file on top of the defaults.

        Agents listed in the file replace fields of the default agent with
        the same id, or are added when the id is new.

        Raises:
            ValueError: If the file is not a mapping or an agent has no id
        """
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Workflow file must contain a mapping: {path}")

        registry = cls(
            router_prompt=data.get("router_prompt") or ROUTER_PROMPT,
            name=data.get("name") or "Custom Workflow",
        )
        for entry in data.get("agents") or []:
            if not isinstance(entry, dict) or "id" not in entry:
                raise ValueError(f"Workflow agent entries need an 'id': {entry!r}")
            existing = registry._agents.get(str(entry["id"]))
            if existing is not None:
                merged = existing.to_dict()
                merged.update(entry)
                if "systemPrompt" in entry:
                    merged["system_prompt"] = entry["systemPrompt"]
                registry._agents[existing.id] = AgentDefinition.from_dict(merged)
            else:
                registry._agents[str(entry["id"])] = AgentDefinition.from_dict(entry)

        get_logger().log("workflow", "WORKFLOW_LOADED", {
            "path": str(path),
            "agents": registry.agent_ids(),
        })
        return registry
