def build_overlay_position_prompt(*, text_length: int, long_text: bool) -> str:
    """Ask a vision model where a text band would cover the least of the artwork."""
    sizes = "topMAX or bottomMAX (tall band)" if long_text else "b, t, tl, tr, bl or br"
    return f"""
This is a square picture-book page. A translucent text band holding {text_length} characters
will be laid over it.

Pick the placement that hides the least of the faces and main action.
Allowed answers: {sizes}.

Answer with the placement code alone on the first line, then one short reason.""".strip()
