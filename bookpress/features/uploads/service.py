# bookpress/features/uploads/service.py
import os
from typing import Dict, List

from bookpress.lib.imaging import load_image_bytes, sniff_mime, to_data_url, write_bytes_atomic
from bookpress.lib.providers.base import TextRequest, TextStage
from bookpress.logger import get_logger
from bookpress.pipeline.errors import StageError
from bookpress.pipeline.runner import StageContext
from bookpress.pipeline.stages import StageName

from .prompt import SYSTEM, build_analysis_prompt

log = get_logger(__name__)

ROLE_STAGES = {
    "child": TextStage.IMAGE_ANALYSIS_CHILD,
    "supporting": TextStage.IMAGE_ANALYSIS_SUPPORT,
    "location": TextStage.IMAGE_ANALYSIS_LOCATION,
}
_EXT = {"image/png": ".png", "image/jpeg": ".jpg", "image/gif": ".gif", "image/webp": ".webp"}


def analyze_uploads(ctx: StageContext) -> dict:
    """
    images.analyze_uploads: describe every reference photo for later prompts.
    The child's photo is mandatory once supplied; supporting and location
    photos that fail are recorded and skipped.
    """
    profile = ctx.output(StageName.BRIEF_EXTRACT).get("profile", {})
    hero = profile.get("child_name") or "the child"
    characters: List[Dict] = []
    locations: List[Dict] = []
    errors: List[Dict] = []

    for index, upload in enumerate(ctx.request.uploads, start=1):
        name = upload.name or (hero if upload.role == "child" else f"{upload.role} {index}")
        try:
            data = load_image_bytes(upload.image)
            mime = sniff_mime(data)
            if not mime.startswith("image/"):
                raise ValueError(f"upload {index} is not an image")
            local = write_bytes_atomic(ctx.path("uploads", f"{index}-{upload.role}{_EXT.get(mime, '.png')}"), data)
            resp = ctx.text.call(TextRequest(
                stage=ROLE_STAGES[upload.role],
                prompt=build_analysis_prompt(role=upload.role, name=name, relationship=upload.relationship or ""),
                system=SYSTEM,
                image_urls=[to_data_url(data, mime)],
                temperature=0.2,
            ))
        except Exception as e:
            if upload.role == "child":
                raise StageError(f"could not analyse the child's photo: {e}") from e
            log.warning(f"{ctx.log_prefix()} skipping {upload.role} upload {index}: {e}")
            errors.append({"index": index, "role": upload.role, "error": str(e)})
            continue

        entry = {"name": name, "role": upload.role, "description": resp.output, "image": os.path.relpath(local, ctx.workdir)}
        if upload.role == "location":
            locations.append(entry)
        else:
            if upload.relationship:
                entry["relationship"] = upload.relationship
            characters.append(entry)

    if not any(c["role"] == "child" for c in characters):
        characters.insert(0, {"name": hero, "role": "child", "description": "", "image": None})

    log.info(f"{ctx.log_prefix()} {len(characters)} characters, {len(locations)} locations, {len(errors)} skipped")
    return {"characters": characters, "locations": locations, "errors": errors}
