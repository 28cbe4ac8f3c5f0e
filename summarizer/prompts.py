"""
Prompt templates for the summarizer.

Each template is a plain string with {{variable}} placeholders. A file named
<template>.md in the configured templates directory replaces the built-in
version, so prompts can be tuned without touching code.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from summarizer.template import render

logger = logging.getLogger("daily.summarizer.prompts")

LANGUAGE_NAMES = {
    "en": "English",
    "zh": "Simplified Chinese",
}


SESSION_SUMMARY = """You are analyzing an AI coding assistant session transcript. Generate a summary in JSON format.

Context:
- Working Directory: {{cwd}}
- Git Branch: {{git_branch}}

Transcript:
{{transcript}}

Generate a JSON response with this exact structure:
```json
{
  "topic": "Short kebab-case topic for the filename (2-4 words, e.g. 'fix-auth-bug', 'add-dark-mode')",
  "summary": "2-3 sentence overview including CONCRETE RESULTS (answers found, solutions implemented, code written). Never just describe the action.",
  "decisions": "Key decisions made and their rationale (markdown list)",
  "learnings": "Key learnings from this session (markdown list)",
  "skill_hints": "Potential reusable skills (only if they pass the quality gate below)"
}
```

## Skill Quality Gate
Only suggest skills that pass ALL three checks:
1. Was there debugging, trial-and-error, or a non-obvious discovery?
2. Is this a recurring problem, not a one-time edge case?
3. Can the solution be clearly described and verified?

skill_hints format (only if the gate passes):
```
- **[skill-name]**: [what it solves]
  - Trigger: [error message or symptom]
  - Why: [root cause]
```

If no skills pass the gate, set skill_hints to "None identified in this session."

Write all prose in {{language}}. Output ONLY the JSON block, no additional text."""


DAILY_SUMMARY = """You are analyzing AI coding assistant sessions from {{date}}. Generate a daily summary.

## Time Context
- Current time: {{current_time}} ({{current_period}})
- Session names start with their time: "21_03-fix-bug" started at 21:03 (evening), "09_30-add-feature" at 09:30 (morning)
- Periods: night (00:00-05:59), morning (06:00-11:59), afternoon (12:00-17:59), evening (18:00-23:59)

Use the times in the session names to describe when things happened. Never invent a period no session falls in.
{{existing_digest}}
{{sessions}}

## Your Task

Answer: what was asked, what was discussed, what was learned, and what comes next.

1. **overview**: 2-3 sentences on what happened today, using the actual time periods.
2. **session_details**: one markdown list item per session: the session name and a one-line description.
3. **insights**: technical discoveries, patterns, connections between topics.
4. **skills**: reusable patterns that could become skills (or "None identified").
5. **commands**: workflows that could become slash commands (or "None identified").
6. **reflections**: a short paragraph on what went well and what could improve.
7. **tomorrow_focus**: prioritized next steps from unfinished work and open problems.

Output format:
```json
{
  "overview": "...",
  "session_details": "...",
  "insights": "...",
  "skills": "...",
  "commands": "...",
  "reflections": "...",
  "tomorrow_focus": "..."
}
```

Write all prose in {{language}}. Output ONLY the JSON block, with all strings properly escaped."""


EXISTING_DIGEST_MERGE = """
## Existing Daily Summary (from an earlier digest today)

Earlier sessions were already summarized. Preserve this content and merge the new sessions into it:

```
{{existing}}
```

- Combine the overviews into one for the whole day
- Append new session details to the existing ones
- Merge insights, skills and commands without duplicates
- Update reflections and tomorrow's focus to cover all work done
"""


EXISTING_DIGEST_REGENERATE = """
## REGENERATE MODE

Rewrite the existing daily summary below with better structure and time accuracy. Do NOT add content that isn't in it.

```
{{existing}}
```

- Take the session list from its Sessions section
- Derive the actual time periods from the session names
- Keep all insights, reflections and tomorrow's focus, but improve clarity
"""


SKILL_EXTRACT = """You are extracting a reusable skill from an AI coding assistant session.

## Quality Gate
1. Was there trial-and-error, debugging, or a non-obvious discovery?
2. Is this a recurring problem, not a one-time edge case?
3. Can the solution be clearly described and verified?

If ANY answer is no, respond with exactly:
NOT_EXTRACTABLE: [reason]

Otherwise generate the skill.

## Session:
{{session}}

Skill hint: {{hint}}

## Output Format:

```markdown
---
name: skill-name-kebab-case
description: "Include error messages, symptoms, or how a user might describe the problem. Max 100 tokens."
origin: "{{date}}"
---

# Skill Name

What this skill solves.

## When to Use
- [Exact error message or symptom]
- [How a user might describe it]

## Root Cause

## Solution
1. [First step]
2. [Second step]

## Verification
- [Check command or expected output]
```

Write in {{language}}. Output ONLY the markdown (or the NOT_EXTRACTABLE line)."""


COMMAND_EXTRACT = """Generate a slash command file for an AI coding assistant based on this session.

Session:
{{session}}

Command hint: {{hint}}

The command file must:
1. Have a clear description
2. Explain when to use it
3. Give the assistant instructions to follow
4. Be usable as-is

```markdown
---
description: "Brief description of what this command does"
---

# Command Name

[When to use this command]

## Instructions

[Instructions to follow when this command is invoked]
```

Write in {{language}}. Output ONLY the markdown."""


TEMPLATES = {
    "session_summary": SESSION_SUMMARY,
    "daily_summary": DAILY_SUMMARY,
    "skill_extract": SKILL_EXTRACT,
    "command_extract": COMMAND_EXTRACT,
}

DEFAULT_HINT = "Based on patterns in the session"


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def load_template(name: str, templates_dir: Optional[Path] = None) -> str:
    """Built-in template, or <templates_dir>/<name>.md if that file exists."""
    if name not in TEMPLATES:
        raise KeyError(f"Unknown prompt template: {name}")

    if templates_dir is not None:
        custom = Path(templates_dir) / f"{name}.md"
        try:
            text = custom.read_text(encoding="utf-8")
        except FileNotFoundError:
            pass
        else:
            if text.strip():
                logger.debug(f"Using custom template {custom}")
                return text
            logger.warning(f"Custom template {custom} is empty, using built-in")

    return TEMPLATES[name]


def session_summary_prompt(
    transcript: str,
    cwd: str,
    git_branch: Optional[str],
    language: str = "en",
    templates_dir: Optional[Path] = None,
) -> str:
    return render(load_template("session_summary", templates_dir), {
        "transcript": transcript,
        "cwd": cwd,
        "git_branch": git_branch or "N/A",
        "language": language_name(language),
    })


def daily_summary_prompt(
    date: str,
    sessions: list[dict],
    current_time: str,
    current_period: str,
    existing: Optional[str] = None,
    language: str = "en",
    templates_dir: Optional[Path] = None,
) -> str:
    """
    sessions: [{"name": ..., "content": ...}]. With no sessions and an
    existing digest, the prompt asks for a rewrite instead of a merge.
    """
    if existing and not sessions:
        existing_section = render(EXISTING_DIGEST_REGENERATE, {"existing": existing})
        sessions_section = ""
    else:
        existing_section = render(EXISTING_DIGEST_MERGE, {"existing": existing}) if existing else ""
        sessions_section = "## Sessions (JSON):\n" + json.dumps(sessions, indent=2, ensure_ascii=False)

    return render(load_template("daily_summary", templates_dir), {
        "date": date,
        "current_time": current_time,
        "current_period": current_period,
        "existing_digest": existing_section,
        "sessions": sessions_section,
        "language": language_name(language),
    })


def skill_extract_prompt(
    session: str,
    date: str,
    hint: Optional[str] = None,
    language: str = "en",
    templates_dir: Optional[Path] = None,
) -> str:
    return render(load_template("skill_extract", templates_dir), {
        "session": session,
        "hint": hint or DEFAULT_HINT,
        "date": date,
        "language": language_name(language),
    })


def command_extract_prompt(
    session: str,
    hint: Optional[str] = None,
    language: str = "en",
    templates_dir: Optional[Path] = None,
) -> str:
    return render(load_template("command_extract", templates_dir), {
        "session": session,
        "hint": hint or DEFAULT_HINT,
        "language": language_name(language),
    })
