"""Component discovery: what capabilities can the agent reach in a workspace?

Hooks and slash commands are read straight from the agent's settings and
command directories. Tool servers and skills are only known to the agent
itself, so it is asked to list them as JSON.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from .backends.base import AgentBackend
from .events import EventEmitter, ProgressKind
from .models import Component, ComponentKind, new_id
from .parsing import extract_json_array, valid_items
from .process import AbortScope

logger = logging.getLogger(__name__)

BUILTIN_COMMANDS = (
    "/help, /clear, /compact, /cost, /doctor, /init, /login, /logout, /memory, "
    "/model, /permissions, /review, /status, /terminal, /vim"
)

TOOL_SERVER_PROMPT = (
    "List ALL MCP servers you have access to right now. "
    "For each one, provide the server name, a short description, and the COMPLETE "
    "list of every tool it provides.\n\n"
    'IMPORTANT: The "triggers" field must contain EVERY tool from the server using the exact '
    '"mcp__serverName__toolName" format (e.g. "mcp__plugin_context7_context7__query-docs"). '
    "Do NOT omit any tools; list all of them so we can fully block/unblock the server "
    "during evaluation.\n\n"
    'Return ONLY a JSON array like: [{"name":"server-name","description":"what it does",'
    '"triggers":["mcp__server__tool1","mcp__server__tool2"]}]\n'
    "If there are no MCP servers, return an empty array [].\n"
    "Return ONLY valid JSON, no other text."
)

SKILLS_PROMPT = (
    "List ALL skills (slash commands provided by MCP servers or plugins) you have access "
    f"to right now. Do NOT include built-in commands like {BUILTIN_COMMANDS}. "
    "Only list custom skills from plugins or MCP servers.\n\n"
    "IMPORTANT: For each skill, also identify the underlying MCP tool(s) that implement it. "
    'The tool names follow the pattern "mcp__serverName__toolName" '
    '(e.g. "mcp__plugin_fiftyone__import_dataset").\n\n'
    'Return ONLY a JSON array like: [{"name":"/skill-name","type":"skill",'
    '"description":"what it does","triggers":["mcp__server__tool1","mcp__server__tool2"]}]\n'
    'The "triggers" field MUST contain the actual mcp__ tool identifiers, NOT the /skill-name.\n'
    "If there are no custom skills, return an empty array [].\n"
    "Return ONLY valid JSON, no other text."
)

COMPONENT_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "type": {"type": ["string", "null"]},
        "description": {"type": ["string", "null"]},
        "triggers": {"type": ["array", "null"], "items": {"type": "string"}},
    },
}


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError):
        logger.warning("Ignoring unreadable settings file %s", path)
        return None
    return data if isinstance(data, dict) else None


def _hook_description(entry: Any) -> str:
    if isinstance(entry, dict):
        if isinstance(entry.get("command"), str):
            return entry["command"]
        inner = entry.get("hooks")
        if isinstance(inner, list):
            commands = [h["command"] for h in inner if isinstance(h, dict) and isinstance(h.get("command"), str)]
            if commands:
                return "; ".join(commands)
    return json.dumps(entry)


def discover_hooks(workspace: Path, home: Path) -> list[Component]:
    """One component per configured hook entry, global settings first."""
    sources = [(home / ".claude" / "settings.json", False)]
    local_settings = workspace / ".claude" / "settings.json"
    if local_settings.resolve() != sources[0][0].resolve():
        sources.append((local_settings, True))

    components: list[Component] = []
    for path, is_local in sources:
        settings = _read_json(path)
        hooks = settings.get("hooks") if settings else None
        if not isinstance(hooks, dict):
            continue
        for event, entries in hooks.items():
            if not isinstance(entries, list):
                continue
            for entry in entries:
                components.append(
                    Component(
                        id=new_id(),
                        kind=ComponentKind.HOOK,
                        name=f"Hook: {event}{' (local)' if is_local else ''}",
                        description=_hook_description(entry),
                        triggers=[event],
                    )
                )
    return components


def discover_commands(workspace: Path, home: Path) -> list[Component]:
    """One component per ``*.md`` command file, workspace commands first."""
    components: list[Component] = []
    for directory in (workspace / ".claude" / "commands", home / ".claude" / "commands"):
        if not directory.is_dir():
            continue
        for path in sorted(directory.glob("*.md")):
            try:
                head = path.read_text(encoding="utf-8", errors="replace")[:200]
            except OSError:
                logger.warning("Skipping unreadable command file %s", path)
                continue
            name = f"/{path.stem}"
            components.append(
                Component(
                    id=new_id(),
                    kind=ComponentKind.SLASH_COMMAND,
                    name=name,
                    description=head.split("\n")[0] or path.stem,
                    triggers=[name],
                )
            )
    return components


def components_from_reply(raw: str, fallback: ComponentKind) -> list[Component]:
    """Turn the agent's JSON listing into components; empty on parse failure."""
    items = extract_json_array(raw)
    if items is None:
        logger.warning("No JSON array in %s discovery reply", fallback.value)
        return []
    return [
        Component(
            id=new_id(),
            kind=ComponentKind.parse(item.get("type"), fallback),
            name=item["name"],
            description=item.get("description") or "",
            triggers=list(item.get("triggers") or [item["name"]]),
        )
        for item in valid_items(items, COMPONENT_ITEM_SCHEMA)
    ]


class ComponentDiscovery:
    """Merges static and agent-reported components for one workspace."""

    def __init__(
        self,
        backend: AgentBackend,
        events: EventEmitter | None = None,
        home: Path | None = None,
    ) -> None:
        self._backend = backend
        self._events = events or EventEmitter()
        self._home = home or Path.home()

    async def discover(
        self, workspace: str, scope: AbortScope | None = None
    ) -> list[Component]:
        """Return hooks, tool servers, skills and commands, in that order."""
        ws = Path(workspace) if workspace else self._home

        hooks = discover_hooks(ws, self._home)
        commands = discover_commands(ws, self._home)
        self._events.text(
            ProgressKind.DISCOVERY,
            f"Found {len(hooks)} hooks, {len(commands)} commands. "
            "Querying Claude for MCP servers and skills...\n",
        )

        servers, skills = await asyncio.gather(
            self._query(TOOL_SERVER_PROMPT, ComponentKind.TOOL_SERVER, ws, scope),
            self._query(SKILLS_PROMPT, ComponentKind.SKILL, ws, scope),
        )
        self._events.text(
            ProgressKind.DISCOVERY,
            f"Found {len(servers)} MCP servers, {len(skills)} skills.\n",
        )

        logger.info(
            "Discovered %d hooks, %d tool servers, %d skills, %d commands",
            len(hooks), len(servers), len(skills), len(commands),
        )
        return [*hooks, *servers, *skills, *commands]

    async def _query(
        self,
        prompt: str,
        fallback: ComponentKind,
        workspace: Path,
        scope: AbortScope | None,
    ) -> list[Component]:
        result = await self._backend.ask(prompt, cwd=str(workspace), scope=scope)
        if not result.ok:
            logger.warning(
                "%s discovery call failed: %s",
                fallback.value,
                result.error or result.stderr.strip()[:200] or f"exit {result.returncode}",
            )
            return []
        return components_from_reply(result.stdout, fallback)
