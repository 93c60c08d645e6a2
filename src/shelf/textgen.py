"""Drafting of commit messages and reviews from a diff.

Only the diff text is handed to the TextGenerator; the store and the
tracked files are never exposed to it.
"""

from enum import Enum
from pathlib import Path
from typing import Optional
import logging
import shlex
import subprocess

from .constants import PROMPTS_DIR
from .errors import GeneratorError, ShelfIOError
from .interfaces import TextGenerator

logger = logging.getLogger(__name__)


class PromptKind(str, Enum):
    COMMIT = "commit"
    REVIEW = "review"

    @property
    def filename(self) -> str:
        return f"{self.value}.txt"


BUILTIN_PROMPTS = {
    PromptKind.COMMIT: """\
Write a git commit message for the dotfile changes in the diff below.

Use a summary line of at most 72 characters in the imperative mood,
followed by a blank line and a short body explaining what changed and why.
Mention the affected program (shell, editor, window manager, ...) when it
is obvious from the file path. Output only the commit message.
""",
    PromptKind.REVIEW: """\
Review the dotfile changes in the diff below.

Point out mistakes that would break the configuration, settings that look
accidental, secrets or machine-specific values that should not be shared
across machines, and simpler ways to express the same thing. Be brief and
refer to file names when you make a point.
""",
}


def load_prompt(kind: PromptKind, config_dir: Optional[Path] = None) -> str:
    """Get the prompt text for a kind.

    A file ``prompts/<kind>.txt`` in the configuration directory takes
    precedence over the built-in prompt.

    Raises:
        ShelfIOError: If the user prompt exists but cannot be read
    """
    if config_dir is not None:
        path = Path(config_dir) / PROMPTS_DIR / kind.filename
        if path.is_file():
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise ShelfIOError(str(path), str(e), operation="prompt") from e
            if text.strip():
                logger.debug("Using prompt from %s", path)
                return text
    return BUILTIN_PROMPTS[kind]


def draft(
    kind: PromptKind,
    diff_text: str,
    generator: TextGenerator,
    config_dir: Optional[Path] = None,
) -> str:
    """Ask the generator for a commit message or review of a diff.

    Raises:
        ValueError: If there is nothing to describe
    """
    if not diff_text.strip():
        raise ValueError("Nothing to draft: the diff is empty")

    prompt = load_prompt(kind, config_dir)
    return generator.complete(prompt, diff_text).strip()


class CommandGenerator:
    """TextGenerator backed by an external command.

    The command gets the prompt followed by the diff on stdin and
    answers on stdout, the way ``llm -m gpt-4o-mini`` or ``ollama run
    llama3`` do.
    """

    def __init__(self, command: str, timeout: float = 120.0):
        self.command = command
        self.timeout = timeout
        try:
            self.argv = shlex.split(command)
        except ValueError as e:
            raise GeneratorError(command, str(e)) from e
        if not self.argv:
            raise GeneratorError(command, "empty command")

    def complete(self, prompt: str, context: Optional[str] = None) -> str:
        """Run the command once and return its output.

        Raises:
            GeneratorError: Command missing, timed out, failed or printed nothing
        """
        stdin = prompt if context is None else f"{prompt}\n{context}"
        try:
            result = subprocess.run(
                self.argv,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise GeneratorError(self.command, f"{self.argv[0]} not found") from e
        except subprocess.TimeoutExpired as e:
            raise GeneratorError(self.command, f"no answer after {self.timeout:g}s") from e
        except OSError as e:
            raise GeneratorError(self.command, str(e)) from e

        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip() or f"exit status {result.returncode}"
            raise GeneratorError(self.command, detail)
        if not result.stdout.strip():
            raise GeneratorError(self.command, "empty output")
        logger.debug("%s answered with %d characters", self.argv[0], len(result.stdout))
        return result.stdout
