"""Final normalisation of the spliced message sequence."""

from collections.abc import Iterable

from tavern_context.models import ChatMessage


def merge_messages(messages: Iterable[ChatMessage]) -> list[ChatMessage]:
    """Drop blank messages and merge adjacent same-role messages.

    Merged contents are joined with a blank line; the first message of a
    run keeps its timestamp and name. Inputs are not modified, and
    merge_messages(merge_messages(x)) == merge_messages(x).
    """
    merged: list[ChatMessage] = []
    for message in messages:
        if not message.content.strip():
            continue
        if merged and merged[-1].role == message.role:
            previous = merged[-1]
            merged[-1] = previous.model_copy(
                update={"content": f"{previous.content}\n\n{message.content}"}
            )
        else:
            merged.append(message)
    return merged
