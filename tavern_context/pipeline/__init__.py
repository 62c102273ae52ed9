"""Context assembly pipeline.

Builds, for one chat turn, the message list handed to the model:
  1. World-info activation and assembly (tavern_context.worldbook).
  2. Placeholder and macro resolution (tavern_context.placeholders).
  3. Depth injection of preset fragments into the history (injector).
  4. Merging into a well-formed role-alternating list (merger).
"""

from .injector import group_by_role, inject_prompts, sort_fragments  # noqa: F401
from .merger import merge_messages  # noqa: F401
from .orchestrator import build_context, window_history  # noqa: F401
