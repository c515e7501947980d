SYSTEM = (
    "You are an award-winning children's picture-book author. "
    "Write for reading aloud: short sentences, concrete images, gentle rhythm."
)

SCENE_SYSTEM = (
    "You plan illustrations for picture books. "
    "Return STRICT JSON only: a single object, no markdown, no comments."
)


def _profile_block(profile: dict) -> str:
    return f"""* **Child:** {profile.get("child_name")} (age {profile.get("child_age") or "unknown"})
* **Reading age:** {profile.get("reading_age")}
* **Tone:** {profile.get("tone")}
* **Setting:** {profile.get("setting") or "author's choice"}
* **Themes:** {", ".join(profile.get("themes") or []) or "author's choice"}
* **Interests:** {", ".join(profile.get("interests") or []) or "none given"}"""


def build_outline_prompt(*, title: str, profile: dict, page_count: int) -> str:
    return f"""
Outline a {page_count}-page personalised picture book titled "{title}".

**STORY PROFILE:**
{_profile_block(profile)}

Give a beginning, middle and end in at most 8 bullet points. The child is the hero.""".strip()


def build_draft_prompt(*, title: str, profile: dict, outline: str, page_count: int) -> str:
    return f"""
Write the full text of "{title}" following this outline:

{outline}

**STORY PROFILE:**
{_profile_block(profile)}

Write exactly {page_count} pages. Separate pages with a blank line. No page numbers, no headings.""".strip()


def build_critique_prompt(*, draft: str, reading_age: str) -> str:
    return f"""
Critique this picture-book draft for a {reading_age} reader. List the five most important fixes
(pacing, vocabulary, read-aloud rhythm, emotional arc, ending). Be specific and brief.

DRAFT:
{draft}""".strip()


def build_revision_prompt(*, draft: str, critique: str, page_count: int) -> str:
    return f"""
Revise the draft applying the critique. Keep exactly {page_count} pages separated by blank lines.

CRITIQUE:
{critique}

DRAFT:
{draft}""".strip()


def build_polish_prompt(*, text: str, page_count: int, reading_age: str) -> str:
    return f"""
Polish this {reading_age} picture book for print. Fix typos, smooth the rhythm and keep each page
under 450 characters where possible. Return only the story text: exactly {page_count} pages,
separated by a single blank line.

{text}""".strip()


def build_scene_prompt(*, pages: list, characters: list, setting: str) -> str:
    numbered = "\n".join(f"{i}. {p}" for i, p in enumerate(pages, start=1))
    cast = "\n".join(f"- {c['name']}: {c['description']}" for c in characters) or "- the hero"
    return f"""
Break this {len(pages)}-page story into one illustration scene per page. There are exactly {len(pages)} pages.

**PAGES:**
{numbered}

**CHARACTERS:**
{cast}

**DEFAULT SETTING:** {setting or "as the text suggests"}

**JSON SCHEMA:**
```json
{{"scenes": [{{"page": 1, "setting": "string", "characters": ["name"], "action": "one sentence"}}]}}
```""".strip()
