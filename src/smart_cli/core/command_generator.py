"""Keyword-based command suggestions.

A stand-in for real natural-language generation: the first rule whose
keywords all appear in the prompt wins, otherwise the prompt is echoed.
"""

from typing import List, Tuple

from .exceptions import ValidationError

# (keywords that must all appear, suggested command)
KEYWORD_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("list", "file"), "ls -la"),
    (("git", "status"), "git status"),
    (("node", "version"), "node --version"),
    (("current", "directory"), "pwd"),
    (("create", "file"), 'touch example.txt && echo "File created" > example.txt'),
]

STUB_NOTE = "Keyword-matched suggestion; no language model is involved."


def generate_command(prompt: str) -> str:
    """Suggest a shell command for a prompt.

    Raises:
        ValidationError: If the prompt is empty
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError("Prompt is required")

    prompt_lower = prompt.lower()
    for keywords, command in KEYWORD_RULES:
        if all(keyword in prompt_lower for keyword in keywords):
            return command
    return f'echo "Command generated from: {prompt}"'
