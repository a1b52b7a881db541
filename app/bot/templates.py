from __future__ import annotations

# Tweet bodies. The template prompt itself lives next to the parser
# (app.core.template_parser.build_template_prompt) so the labels cannot drift.

MAX_TWEET_CHARS = 280


def _clip(text: str, limit: int = MAX_TWEET_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def validation_error_template(username: str, errors: list[str]) -> str:
    lines = [f"@{username} Please fix these fields and reply again:"]
    lines += [f"• {err}" for err in errors]
    # never clipped: every error has to reach the requester
    return "\n".join(lines)


def success_template(username: str, question: str, url: str) -> str:
    # keep the url intact, trim the quoted question instead
    head = f"@{username} Your prediction market is live!\n\n"
    tail = f"\n\nTrade here: {url}"
    room = MAX_TWEET_CHARS - len(head) - len(tail) - 2
    quoted = question if len(question) <= room else question[: max(0, room - 1)].rstrip() + "…"
    return f'{head}"{quoted}"{tail}'


def error_template(username: str, error: str) -> str:
    return _clip(f"@{username} Sorry, something went wrong creating your market: {error}")
