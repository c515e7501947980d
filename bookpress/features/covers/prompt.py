from typing import List


def _names(characters: List[dict]) -> str:
    return ", ".join(c.get("name") for c in characters if c.get("name")) or "the child hero"


def _descriptions(characters: List[dict]) -> str:
    return "\n".join(f"- {c.get('name')}: {c.get('description')}" for c in characters if c.get("description"))


def build_front_cover_prompt(*, title: str, characters: List[dict], setting: str, style: str) -> str:
    """
    Front cover art. The title is typeset afterwards onto the top band, so the
    image itself must stay free of lettering.
    """
    desc = _descriptions(characters)
    return f"""
Create the front cover illustration for a personalised children's picture book called "{title}".

**PRIMARY SUBJECT (MANDATORY):**
* {_names(characters)} as the clear, joyful focal point, facing the reader.
* **Setting:** {setting or "a bright, inviting place from the story"}
{("**CHARACTER LIKENESS:**" + chr(10) + desc) if desc else ""}

**STYLE:** {style}. Vibrant, warm, instantly readable from a shelf.

**COMPOSITION:**
- Keep the top third calm and uncluttered; the title will be placed there.
- Keep faces away from the outer 5% of the canvas.
- No words, letters or logos anywhere in the image.""".strip()


def build_back_cover_prompt(*, title: str, setting: str, style: str) -> str:
    return f"""
Create the back cover illustration for the children's picture book "{title}".

* A quiet, wide view of {setting or "the world of the story"} with no main characters in close-up.
* **STYLE:** {style}, matching the front cover.
- Keep the lower half soft and low-detail; a short blurb will sit there.
- No words, letters or barcodes in the image.""".strip()
