SYSTEM = (
    "You turn children's-book order briefs into a structured story profile. "
    "Return STRICT JSON only: a single object, no markdown, no comments."
)

def build_profile_prompt(
    *,
    title: str,
    brief: str,
    child_name: str,
    child_age: str,
    reading_age: str,
    interests: str,
) -> str:
    return f"""
Read the order below and extract a story profile for a personalised picture book.

**ORDER:**
* **Book title:** "{title}"
* **Child's name:** "{child_name}"
* **Child's age:** "{child_age}"
* **Reading age:** "{reading_age}"
* **Interests:** "{interests}"
* **Brief from the customer:**
{brief}

**RULES:**
- Only use facts present in the order; leave a field empty rather than inventing it.
- `themes` is a short list of 1-3 words each.
- `style` describes the illustration style in one line.

**JSON SCHEMA:**
```json
{{
  "child_name": "string",
  "child_age": 0,
  "reading_age": "string",
  "tone": "string",
  "setting": "string",
  "themes": ["string"],
  "interests": ["string"],
  "style": "string"
}}
```""".strip()
