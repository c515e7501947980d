from typing import List


def _cast_lines(characters: List[dict]) -> str:
    lines = []
    for c in characters:
        desc = c.get("description") or "as described in the story"
        lines.append(f"- {c.get('name')}: {desc}")
    return "\n".join(lines) or "- the child hero"


def build_interior_prompt(
    *,
    page_no: int,
    page_text: str,
    scene: dict,
    characters: List[dict],
    locations: List[dict],
    style: str,
) -> str:
    """
    One square full-bleed interior illustration. Text is composited later, so
    the prompt asks for a calm band the overlay can sit on and no lettering.
    """
    present = set(scene.get("characters") or [])
    cast = [c for c in characters if c.get("name") in present] or characters
    place = scene.get("setting") or (locations[0]["description"] if locations else "")
    location_block = "\n".join(f"- {l.get('name')}: {l.get('description')}" for l in locations)

    return f"""
Create a full-bleed square illustration for page {page_no} of a children's picture book.

**STYLE (MANDATORY):** {style}. Consistent character design across every page.

**SCENE:**
* **Setting:** {place or "illustrator's choice"}
* **Action:** {scene.get("action") or page_text}
* **Page text (for mood only, do not letter it):** "{page_text}"

**CHARACTERS (match these descriptions exactly):**
{_cast_lines(cast)}
{("**REFERENCE LOCATIONS:**" + chr(10) + location_block) if location_block else ""}

**COMPOSITION:**
- Keep faces and key action away from the outer 5% of the canvas; it will be trimmed.
- Leave one calm, low-detail band (top or bottom third) where text can be placed.
- Absolutely no words, letters, numbers or signatures in the image.""".strip()


def build_score_prompt(*, page_text: str, count: int) -> str:
    return f"""
You are art-directing a children's picture book. Rate each of the {count} attached candidate
illustrations for this page text: "{page_text}"

Judge: match to the text, character consistency, child-friendliness, absence of lettering or artefacts.
For every image answer exactly in this shape, in order:
Image 1: <score>/10
Strengths: <one line>
Concerns: <one line>""".strip()
