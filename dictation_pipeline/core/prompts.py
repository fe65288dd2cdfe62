"""
Post-processing prompt table.

Each prompt adds an output style on top of the base post-processing
rules. ``keywords`` are short phrases that hint the prompt fits the
dictated text; the domain selector uses them when automatic prompt
selection is on.
"""

import typing as t
from dataclasses import dataclass

DEFAULT_PROMPT_ID = "improve_transcription"


@dataclass(frozen=True)
class PostProcessPrompt:
    id: str
    name: str
    instructions: str
    keywords: t.Tuple[str, ...] = ()


BUILTIN_PROMPTS = (
    PostProcessPrompt(
        "improve_transcription", "Improve Transcription",
        "Clean the text for readability: fix spelling, capitalization, punctuation and spacing, "
        "write numbers as digits when the meaning is clear, and drop filler words and false starts "
        "only when you are confident.",
    ),
    PostProcessPrompt(
        "slack_message", "Slack Message",
        "Write the text as a short, friendly chat update that is easy to skim. "
        "Keep decisions, blockers, owners and dates exactly as spoken.",
        ("slack", "channel", "team update", "quick update", "message"),
    ),
    PostProcessPrompt(
        "email_draft", "Email Draft",
        "Write the text as a professional email: a 'Subject:' line followed by the body paragraphs.",
        ("email", "subject", "dear", "regards"),
    ),
    PostProcessPrompt(
        "document_writer", "Document Writer",
        "Structure the text as a document draft with the headings Title, Context, Details, "
        "Decisions and Next Steps.",
        ("document", "proposal", "design doc", "write-up", "draft"),
    ),
    PostProcessPrompt(
        "meeting_notes", "Meeting Notes",
        "Structure the text as meeting notes with the sections Summary, Decisions, Open Questions "
        "and Action Items. Use '- [ ] Owner - Task (Due: date or TBA)' for action items.",
        ("meeting", "agenda", "decisions", "attendees", "recap", "notes"),
    ),
    PostProcessPrompt(
        "action_items", "Action Items",
        "List only the actionable tasks, one per line as '- [ ] Owner - Task (Due: date or TBA)'. "
        "Use 'Unassigned' when no owner was named.",
        ("action item", "todo", "next steps", "owner", "deadline", "task"),
    ),
    PostProcessPrompt(
        "commit_message", "Commit Message",
        "Write a conventional commit message (feat, fix, chore, refactor, docs or test) with a "
        "subject of at most 72 characters and a body only if needed.",
        ("commit", "fix", "refactor", "feat"),
    ),
)

BUILTIN_PROMPT_IDS = frozenset(p.id for p in BUILTIN_PROMPTS)


def get_prompt(prompt_id, prompts=BUILTIN_PROMPTS) -> t.Optional[PostProcessPrompt]:
    for prompt in prompts:
        if prompt.id == prompt_id:
            return prompt
    return None
