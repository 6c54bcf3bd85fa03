# Prompt assembly
# services/prompt_assembler.py
"""
Builds the system prompt and the bounded, speaker-labeled history for
one agent turn. Everything here is pure and deterministic.

Composition order of the system prompt is fixed: persona, role, swarm
task, human-mode instructions, priority-sorted shared context, response
guidelines. Task framing comes before supplementary context.
"""

from typing import Dict, List, Mapping, Optional, Sequence

from models.agents import (
    AgentConfig,
    ContextBlock,
    ContextPriority,
    ConversationMessage,
    HumanMode,
    SenderType,
)
from models.provider import ChatMessage


HISTORY_LIMIT = 20

PRIORITY_RANK: Dict[str, int] = {
    ContextPriority.CRITICAL.value: 0,
    ContextPriority.HIGH.value: 1,
    ContextPriority.MEDIUM.value: 2,
    ContextPriority.LOW.value: 3,
}

HUMAN_MODE_INSTRUCTIONS: Dict[HumanMode, str] = {
    HumanMode.COLLABORATE: (
        "## Human Interaction Mode: COLLABORATE\n"
        "The human is providing suggestions and ideas. You should:\n"
        "- Consider their input thoughtfully but use your expertise to adapt or improve upon their suggestions\n"
        "- Feel free to respectfully disagree or propose alternatives if you have better ideas\n"
        "- Explain your reasoning when you deviate from their suggestions\n"
        "- Treat their input as collaborative brainstorming, not strict requirements"
    ),
    HumanMode.DIRECT: (
        "## Human Interaction Mode: DIRECT\n"
        "The human is giving direct commands. You MUST:\n"
        "- Follow their instructions precisely and completely\n"
        "- Execute their requests without deviation unless they ask for alternatives\n"
        "- If you cannot follow an instruction, explain why clearly\n"
        "- Prioritize their explicit requirements over your own judgment\n"
        "- Acknowledge and confirm understanding of their commands"
    ),
}


def priority_rank(priority: Optional[str]) -> int:
    """Unknown priorities sort with ``low``"""
    return PRIORITY_RANK.get((priority or "").lower(), PRIORITY_RANK[ContextPriority.LOW.value])


def sort_context_blocks(blocks: Sequence[ContextBlock]) -> List[ContextBlock]:
    # sorted() is stable, so equal priorities keep their load order
    return sorted(blocks, key=lambda block: priority_rank(block.priority))


def assemble_system_prompt(
    agent: AgentConfig,
    context_blocks: Sequence[ContextBlock],
    swarm_task: Optional[str],
    human_mode: Optional[HumanMode] = None
) -> str:
    sections = [agent.system_prompt or f"You are {agent.name}, an AI assistant."]

    if agent.role:
        sections.append(f"Your role: {agent.role}")

    if swarm_task:
        sections.append(f"## Current Task\n{swarm_task}")

    if human_mode is not None:
        instructions = HUMAN_MODE_INSTRUCTIONS.get(HumanMode(human_mode))
        if instructions:
            sections.append(instructions)

    if context_blocks:
        context = ["## Shared Context"]
        for block in sort_context_blocks(context_blocks):
            context.append(f"### {block.name}\n{block.content}")
        sections.append("\n\n".join(context))

    sections.append(
        "## Response Guidelines\n"
        "- Be helpful and concise\n"
        f"- Stay in character as {agent.name}\n"
        "- Reference shared context when relevant\n"
        "- Collaborate effectively with other agents and humans"
    )

    return "\n\n".join(sections)


def build_history(
    messages: Sequence[ConversationMessage],
    agent_name_by_id: Mapping[str, str],
    limit: int = HISTORY_LIMIT
) -> List[ChatMessage]:
    """
    Flatten the last ``limit`` messages into the two-role chat format,
    oldest first. Older history is dropped, not summarized.
    """
    history: List[ChatMessage] = []
    recent = list(messages)[-limit:] if limit > 0 else []

    for message in recent:
        if message.sender_type == SenderType.HUMAN.value:
            history.append(ChatMessage(role="user", content=message.content))
        elif message.sender_type == SenderType.AGENT.value:
            name = agent_name_by_id.get(message.sender_id or "", "Agent")
            history.append(ChatMessage(role="assistant", content=f"[{name}]: {message.content}"))
        else:
            history.append(ChatMessage(role="user", content=f"[System]: {message.content}"))

    return history


def build_conversation(history: Sequence[ChatMessage], message: str) -> List[ChatMessage]:
    """History followed by the current user turn"""
    return [*history, ChatMessage(role="user", content=message)]
