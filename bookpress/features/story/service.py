# bookpress/features/story/service.py
import json
import re
from typing import List

from pydantic import ValidationError

from bookpress.lib.json_tools import parse_json_object
from bookpress.lib.providers.base import TextRequest, TextStage
from bookpress.logger import get_logger
from bookpress.pipeline.errors import StageError
from bookpress.pipeline.runner import StageContext
from bookpress.pipeline.stages import StageName

from .prompt import (
    SCENE_SYSTEM,
    SYSTEM,
    build_critique_prompt,
    build_draft_prompt,
    build_outline_prompt,
    build_polish_prompt,
    build_revision_prompt,
    build_scene_prompt,
)
from .schemas import Scene, SceneBreakdown

log = get_logger(__name__)

_PAGE_BREAK = re.compile(r"\n{2,}")


def split_pages(text: str, limit: int) -> List[str]:
    """Blank-line separated story text -> page paragraphs, capped at `limit`."""
    normalized = text.replace("\r\n", "\n").strip()
    pages = [p.strip() for p in _PAGE_BREAK.split(normalized) if p.strip()]
    return pages[:limit]


def _write(ctx: StageContext, name: str, text: str) -> None:
    with open(ctx.path("drafts", name), "w") as f:
        f.write(text)


def reason_story(ctx: StageContext) -> dict:
    """
    story.reason: settle the page text.

    Approved pages from the order are used verbatim. Otherwise the text goes
    outline -> draft -> critique -> revision -> polish, each step saved under
    drafts/ for review.
    """
    req = ctx.request
    profile = ctx.output(StageName.BRIEF_EXTRACT).get("profile", {})
    limit = min(req.page_count, ctx.settings.max_pages)

    if req.pages:
        pages = req.pages[: ctx.settings.max_pages]
        source = "approved"
        outline = ""
    else:
        def ask(stage: TextStage, prompt: str) -> str:
            out = ctx.text.call(TextRequest(stage=stage, prompt=prompt, system=SYSTEM)).output
            _write(ctx, f"{stage.value}.txt", out)
            return out

        outline = ask(TextStage.STORY_OUTLINE, build_outline_prompt(title=req.title, profile=profile, page_count=limit))
        draft = ask(TextStage.STORY_DRAFT, build_draft_prompt(title=req.title, profile=profile, outline=outline, page_count=limit))
        critique = ask(TextStage.STORY_CRITIQUE, build_critique_prompt(draft=draft, reading_age=profile.get("reading_age", "")))
        revised = ask(TextStage.STORY_REVISION, build_revision_prompt(draft=draft, critique=critique, page_count=limit))
        polished = ask(TextStage.STORY_POLISH, build_polish_prompt(text=revised, page_count=limit, reading_age=profile.get("reading_age", "")))
        pages = split_pages(polished, limit)
        source = "generated"

    if not pages:
        raise StageError("story text came back empty")
    if source == "generated" and len(pages) != limit:
        log.warning(f"{ctx.log_prefix()} asked for {limit} pages, got {len(pages)}")

    blurb = req.blurb or (outline.splitlines()[0].strip(" -*") if outline else "") or \
        f"A story made just for {profile.get('child_name', 'you')}."
    story = {"title": req.title, "pages": pages, "blurb": blurb, "source": source}
    with open(ctx.path("story.json"), "w") as f:
        json.dump(story, f, indent=2)
    log.info(f"{ctx.log_prefix()} {len(pages)} pages ({source})")
    return story


def _fallback_scene(page_no: int, text: str, setting: str, hero: str) -> Scene:
    return Scene(page=page_no, setting=setting, characters=[hero] if hero else [], action=text[:200])


def scene_breakdown(ctx: StageContext) -> dict:
    """story.scene_breakdown: one illustration scene per page; gaps are filled from the page text."""
    pages = ctx.output(StageName.STORY_REASON).get("pages", [])
    profile = ctx.output(StageName.BRIEF_EXTRACT).get("profile", {})
    cast = ctx.output(StageName.IMAGES_ANALYZE_UPLOADS).get("characters", [])
    setting = profile.get("setting", "")
    hero = profile.get("child_name", "")

    resp = ctx.text.call(TextRequest(
        stage=TextStage.SCENE_BREAKDOWN,
        prompt=build_scene_prompt(pages=pages, characters=cast, setting=setting),
        system=SCENE_SYSTEM,
        input_format="json",
        temperature=0.3,
    ))
    by_page = {}
    try:
        parsed = SceneBreakdown.model_validate(parse_json_object(resp.output))
        by_page = {s.page: s for s in parsed.scenes}
    except (ValueError, ValidationError) as e:
        log.warning(f"{ctx.log_prefix()} unusable scene JSON from {resp.provider}, using page text: {e}")

    scenes = [
        by_page.get(i) or _fallback_scene(i, text, setting, hero)
        for i, text in enumerate(pages, start=1)
    ]
    filled = sum(1 for i in range(1, len(pages) + 1) if i not in by_page)
    if filled:
        log.info(f"{ctx.log_prefix()} filled {filled} scenes from page text")
    return {"scenes": [s.model_dump() for s in scenes]}
