"""Speaker-name macro substitution.

Only the exact, case-sensitive token spellings below are replaced:

    {{user}}  <user>  (user)   → persona (player) name
    {{char}}  <char>  (char)   → character name
"""

USER_TOKENS: tuple[str, ...] = ("{{user}}", "<user>", "(user)")
CHAR_TOKENS: tuple[str, ...] = ("{{char}}", "<char>", "(char)")


def substitute_macros(text: str, user_name: str | None, char_name: str | None) -> str:
    """Replace speaker-name tokens in text.

    A name of None leaves its tokens untouched; an empty string removes them.
    """
    if not text:
        return text
    if user_name is not None:
        for token in USER_TOKENS:
            text = text.replace(token, user_name)
    if char_name is not None:
        for token in CHAR_TOKENS:
            text = text.replace(token, char_name)
    return text
