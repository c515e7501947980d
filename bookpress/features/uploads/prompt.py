SYSTEM = (
    "You describe reference photos so an illustrator can draw the same person or place "
    "consistently across a picture book. Describe only what is visible. Never guess identity, "
    "ethnicity or health; describe hair, clothing, colours, build and expression."
)

_FOCUS = {
    "child": "the child who is the hero of the book: face shape, hair, eye colour, typical outfit, expression",
    "supporting": "this supporting character: apparent age range, hair, clothing, distinctive accessories",
    "location": "this place: layout, dominant colours, landmarks, time of day and mood",
}


def build_analysis_prompt(*, role: str, name: str, relationship: str = "") -> str:
    who = f"{name} ({relationship})" if relationship else name
    return f"""
Describe {_FOCUS[role]}.
Subject: {who or "unnamed"}

Write 2-4 sentences usable directly inside an illustration prompt. No preamble.""".strip()
