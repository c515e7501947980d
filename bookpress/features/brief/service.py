# bookpress/features/brief/service.py
import json

from pydantic import ValidationError

from bookpress.lib.json_tools import parse_json_object
from bookpress.lib.providers.base import TextRequest, TextStage
from bookpress.logger import get_logger
from bookpress.pipeline.errors import NeedsReview, StageError
from bookpress.pipeline.runner import StageContext

from .prompt import SYSTEM, build_profile_prompt
from .schemas import StoryProfile

log = get_logger(__name__)

DEFAULT_STYLE = "soft watercolour picture-book illustration, gentle light"


def extract_brief(ctx: StageContext) -> dict:
    """brief.extract: order form -> story profile. Structured order fields win over the model."""
    req = ctx.request
    prompt = build_profile_prompt(
        title=req.title,
        brief=req.brief or "(none)",
        child_name=req.child.name or "",
        child_age=str(req.child.age or ""),
        reading_age=req.reading_age or "",
        interests=", ".join(req.interests),
    )
    resp = ctx.text.call(TextRequest(
        stage=TextStage.STORY_PROFILE,
        prompt=prompt,
        system=SYSTEM,
        input_format="json",
        temperature=0.2,
    ))
    try:
        profile = StoryProfile.model_validate(parse_json_object(resp.output))
    except (ValueError, ValidationError) as e:
        raise StageError(f"unparseable story profile from {resp.provider}: {e}") from e

    updates = {
        "child_name": req.child.name or profile.child_name,
        "child_age": req.child.age if req.child.age is not None else profile.child_age,
        "reading_age": req.reading_age or profile.reading_age or ctx.settings.default_reading_age,
        "interests": req.interests or profile.interests,
        "style": req.style_prompt or profile.style or DEFAULT_STYLE,
    }
    profile = profile.model_copy(update=updates)

    if not (profile.child_name or "").strip():
        raise NeedsReview("brief does not name the child the book is for")

    with open(ctx.path("profile.json"), "w") as f:
        json.dump(profile.model_dump(), f, indent=2)
    log.info(f"{ctx.log_prefix()} profile for {profile.child_name} ({profile.reading_age}) via {resp.provider}/{resp.model}")
    return {"profile": profile.model_dump(), "provider": resp.provider, "model": resp.model}
