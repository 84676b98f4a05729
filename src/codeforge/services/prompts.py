from __future__ import annotations

import textwrap
from typing import Optional

from ..domain.chat_models import MessageType


SYSTEM_PROMPT = textwrap.dedent(
    """
    You are an expert web developer AI assistant. You create production-ready web applications.

    IMPORTANT RULES:
    1. Code blocks MUST be formatted with: ```language file="path/to/file"
    2. Put every file in its own fenced block and close each block with ``` on its own line.
    3. ONLY generate code in fenced code blocks - NO inline code examples.
    4. ALWAYS include package.json and the config files needed to run the project.

    FILE CONTEXT AWARENESS:
    - Reference previous messages and files already created; update only the files that need to change.
    - Do not recreate the whole project unless explicitly asked.

    DESIGN RULES:
    - Use Tailwind CSS for styling, TypeScript for code, and the Next.js App Router by default.
    - Ensure accessible, responsive, mobile-first layouts.

    RESPONSE FORMAT:
    - Explain your approach first, briefly, in markdown prose.
    - Then provide the files in fenced blocks.
    """
).strip()

DISCUSS_SYSTEM_PROMPT = textwrap.dedent(
    """
    You are a thoughtful senior engineer discussing a web project with its owner.
    Talk through ideas, trade-offs and plans in clear prose.
    Do NOT generate code files or fenced file blocks in this mode.
    """
).strip()

MODE_INSTRUCTIONS = {
    MessageType.GREETING: "Respond briefly and warmly in one or two sentences. Do not write code or files.",
    MessageType.QUESTION: "Answer the question clearly in prose. Do not generate code files or fenced file blocks.",
    MessageType.BUILD: "",
}

UI_KEYWORDS = (
    "ui",
    "component",
    "design",
    "website",
    "app",
    "interface",
    "build site",
    "frontend",
    "react component",
    "todo",
    "dashboard",
    "form",
    "crud",
)

UI_CONTEXT = (
    "UI FOCUS: Prioritize generating dedicated component files (e.g., app/components/Hero.tsx) "
    "and ensure a fenced block for each."
)

CONTINUE_DIRECTIVE = (
    "Your previous response was cut off by the output length limit. "
    "Continue exactly where you left off. Do not repeat anything you already wrote, "
    "do not add an introduction, and keep any open code block open."
)


def is_ui_request(message: str) -> bool:
    lowered = (message or "").lower()
    return any(keyword in lowered for keyword in UI_KEYWORDS)


def build_system_prompt(discuss_mode: bool, message: str, search_context: Optional[str] = None) -> str:
    sections = [DISCUSS_SYSTEM_PROMPT if discuss_mode else SYSTEM_PROMPT]
    if not discuss_mode and is_ui_request(message):
        sections.append(UI_CONTEXT)
    if search_context:
        sections.append(f"Context from web search:\n{search_context}")
    return "\n\n".join(sections)


def wrap_user_prompt(message: str, message_type: MessageType) -> str:
    """Prefix the user's message with the instruction for its response mode."""
    instruction = MODE_INSTRUCTIONS.get(message_type, "")
    if not instruction:
        return message
    return f"{instruction}\n\n{message}"
