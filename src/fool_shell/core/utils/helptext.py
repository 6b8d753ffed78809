# src/fool_shell/core/utils/helptext.py
from fool_shell.core.command_registry import COMMAND_HELP_TEXTS

# The static header part of the help text
HEADER_HELP_TEXT = """
Fool Shell - Help

A state-machine driven shell with a built-in AI assistant.

---
SYNTAX
---
  A | B               Pipe the output (stdout) of A into the input (stdin) of B.
  cmd < file          Read stdin from file (first stage only).
  cmd > file          Write stdout to file, truncating it (last stage only).
  cmd >> file         Append stdout to file (last stage only).
  'text'              Literal text; nothing is special inside single quotes.
  "text"              Quoted text; \\" \\\\ \\$ and \\` are escapes inside.
  \\c                  Take the next character literally.

---
AI MODE
---
  {trigger} <question>        Send a question to the AI assistant.
                      Example: {trigger} how do I find large files

---
COMMANDS
---
GENERAL:
  help                Show this help text.
  clear               Clear the screen.
  exit [code]         Exit the shell (also: quit). Not allowed inside a pipeline.
""".strip()


def get_help_text(ai_trigger: str = "!") -> str:
    """
    Dynamically assembles the full help text from the header and all
    discovered help text fragments from the command handlers.
    """
    full_help_parts = [HEADER_HELP_TEXT.replace("{trigger}", ai_trigger)]

    # Sort the command help texts alphabetically for a consistent order
    for command_name in sorted(COMMAND_HELP_TEXTS.keys()):
        full_help_parts.append(COMMAND_HELP_TEXTS[command_name])

    return "\n\n".join(full_help_parts)
